from typing import Optional

from cloudadaptor import errors
from cloudadaptor.adaptor import ClusterAdaptor
from cloudadaptor.adaptor.custom import CustomAdaptor
from cloudadaptor.adaptor.rke import RKEAdaptor, RKEEngine
from cloudadaptor.config import Settings
from cloudadaptor.datastore import Database
from cloudadaptor.health import HealthChecker
from cloudadaptor.repo import CustomClusterRepo, RKEClusterRepo

PROVIDER_RKE = "rke"
PROVIDER_CUSTOM = "custom"


class AdaptorFactory:
    """Select the adaptor of a provider by name."""

    def __init__(self, db: Database, settings: Settings, engine: Optional[RKEEngine] = None,
                 checker: Optional[HealthChecker] = None):
        self.db = db
        self.settings = settings
        self.engine = engine
        self.checker = checker or HealthChecker(max_workers=settings.describe_workers)

    def get_cluster_adaptor(self, provider: str) -> ClusterAdaptor:
        """
        Raises:
            BusinessError: ProviderNotSupported
        """
        if provider == PROVIDER_RKE:
            return RKEAdaptor(RKEClusterRepo(self.db), self.engine, self.checker, self.settings)
        if provider == PROVIDER_CUSTOM:
            return CustomAdaptor(CustomClusterRepo(self.db), self.checker)
        raise errors.ProviderNotSupported(f"provider {provider} not support")

    __call__ = get_cluster_adaptor
