"""VPC, subnet and control plane public IP operations."""

from evroc_provider.models.cluster import EvrocCluster, EvrocSubnetStatus, EvrocVPCStatus
from evroc_provider.models.infra import (
    Ipv4CidrBlock,
    PublicIP,
    Subnet,
    SubnetSpec,
    VirtualPrivateCloud,
    VpcRef,
)
from evroc_provider.models.meta import ObjectMeta


class NetworkMixin:
    """Network operations of EvrocService."""

    def reconcile_network(self, evroc_cluster: EvrocCluster) -> None:
        """Ensure the VPC and every declared subnet exist.

        The cluster status gets the VPC name and one entry per subnet, whether the
        subnet was created now or already existed.
        """
        self.log.info("Reconciling network")

        vpc, _ = self.get_or_create(
            VirtualPrivateCloud(metadata=ObjectMeta(name=evroc_cluster.vpc_name, namespace=self.project))
        )
        evroc_cluster.status.network.vpc = EvrocVPCStatus(name=vpc.name, ready=True)

        subnet_statuses = []
        for subnet_spec in evroc_cluster.spec.network.subnets:
            subnet = Subnet(
                metadata=ObjectMeta(name=subnet_spec.name, namespace=self.project),
                spec=SubnetSpec(
                    vpc_ref=VpcRef(name=vpc.name),
                    ipv4_cidr_block=Ipv4CidrBlock(block=subnet_spec.cidr_block),
                ),
            )
            subnet, _ = self.get_or_create(subnet)
            subnet_statuses.append(
                EvrocSubnetStatus(
                    name=subnet.name,
                    id=subnet.name,
                    cidr_block=subnet_spec.cidr_block,
                    ready=True,
                )
            )

        evroc_cluster.status.network.subnets = subnet_statuses

    def reconcile_control_plane_public_ip(self, evroc_cluster: EvrocCluster) -> tuple[str, str]:
        """Ensure the control plane public IP exists.

        The IP is allocated before any machine so its address can go into the control
        plane bootstrap data.

        Returns:
            The public IP name and its address; the address is empty until the cloud
            has allocated one
        """
        self.log.info("Reconciling control plane PublicIP")
        name = evroc_cluster.control_plane_public_ip_name

        public_ip, created = self.get_or_create(
            PublicIP(metadata=ObjectMeta(name=name, namespace=self.project))
        )
        if created:
            # Fetch again to pick up an address assigned during creation
            public_ip = self.get(PublicIP, name)

        address = public_ip.status.public_ipv4_address
        if not address:
            self.log.info(f"PublicIP {name} not yet allocated, waiting")
            return name, ""

        self.log.info(f"Control plane PublicIP {name} ready with address {address}")
        return name, address

    def delete_network(self, evroc_cluster: EvrocCluster) -> None:
        """Delete the subnets, the control plane public IP and then the VPC."""
        self.log.info("Deleting network")

        for subnet_spec in evroc_cluster.spec.network.subnets:
            self.delete_resource(Subnet, subnet_spec.name)

        # Deterministic name, so cleanup works even if status was never written
        self.delete_resource(PublicIP, evroc_cluster.control_plane_public_ip_name)

        self.delete_resource(VirtualPrivateCloud, evroc_cluster.vpc_name)
