"""Cost estimation for orphaned resources and instance classes."""


class CostCalculator:
    """
    Deterministic monthly cost estimates (USD).

    Every method is a pure function of the resource attributes it receives.
    """

    AWS_PRICING = {
        # EBS volume types, per GB-month
        "ebs_gp3_per_gb": 0.088,  # General Purpose SSD (gp3)
        "ebs_gp2_per_gb": 0.11,  # General Purpose SSD (gp2)
        "ebs_io1_per_gb": 0.138,  # Provisioned IOPS SSD (io1)
        "ebs_io2_per_gb": 0.138,  # Provisioned IOPS SSD (io2)
        "ebs_st1_per_gb": 0.054,  # Throughput Optimized HDD (st1)
        "ebs_sc1_per_gb": 0.028,  # Cold HDD (sc1)
        "ebs_standard_per_gb": 0.055,  # Magnetic (standard)
        # Networking
        "elastic_ip": 3.65,  # Unassociated Elastic IP per month
        "network_interface": 0.0,  # Detached ENIs are free, only clutter
        # Stopped instances still pay for attached storage
        "stopped_instance": 5.0,
    }

    # On-demand Linux, us-east-1, per month
    INSTANCE_MONTHLY_COST = {
        "t2.micro": 8.47,
        "t2.small": 16.93,
        "t2.medium": 33.87,
        "t2.large": 67.74,
        "t3.nano": 3.80,
        "t3.micro": 7.59,
        "t3.small": 15.18,
        "t3.medium": 30.37,
        "t3.large": 60.74,
        "t3.xlarge": 121.48,
        "t3.2xlarge": 242.96,
    }
    DEFAULT_INSTANCE_MONTHLY_COST = 50.0

    @staticmethod
    def calculate_ebs_volume_cost(size_gb: int, volume_type: str = "gp2") -> float:
        """
        Calculate monthly cost for an EBS volume.

        Args:
            size_gb: Volume size in gigabytes
            volume_type: EBS volume type (gp2, gp3, io1, io2, st1, sc1, standard)

        Returns:
            Estimated monthly cost in USD (unknown types priced as gp2)
        """
        price_per_gb = CostCalculator.AWS_PRICING.get(
            f"ebs_{volume_type}_per_gb", CostCalculator.AWS_PRICING["ebs_gp2_per_gb"]
        )
        return round(size_gb * price_per_gb, 2)

    @staticmethod
    def calculate_elastic_ip_cost() -> float:
        return CostCalculator.AWS_PRICING["elastic_ip"]

    @staticmethod
    def calculate_network_interface_cost() -> float:
        return CostCalculator.AWS_PRICING["network_interface"]

    @staticmethod
    def calculate_stopped_instance_cost() -> float:
        return CostCalculator.AWS_PRICING["stopped_instance"]

    @staticmethod
    def get_instance_monthly_cost(instance_type: str) -> float:
        """Monthly on-demand price, with a flat default for unknown types."""
        return CostCalculator.INSTANCE_MONTHLY_COST.get(
            instance_type, CostCalculator.DEFAULT_INSTANCE_MONTHLY_COST
        )

    @staticmethod
    def estimate_annual_savings(monthly_cost: float) -> float:
        return round(monthly_cost * 12, 2)
