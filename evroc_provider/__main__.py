"""Allow running the provider with ``python -m evroc_provider``."""

from evroc_provider.cli import app

app(prog_name="evroc-provider")
