"""Registry of the pydantic models that back the operator's CRDs."""

import importlib
import logging
import pkgutil
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Type

from pydantic import BaseModel

logger = logging.getLogger(__name__)

DEFAULT_MODEL_PACKAGES = ["vcmanager.models"]

SCOPES = ("Namespaced", "Cluster")


@dataclass
class CRDInfo:
    """Everything needed to render one CustomResourceDefinition."""

    model: Type[BaseModel]
    group: str
    version: str
    kind: str
    plural: str
    scope: str = "Namespaced"
    status_model: Optional[Type[BaseModel]] = None
    printer_columns: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def key(self):
        return f"{self.group}/{self.version}/{self.kind}"

    @property
    def singular(self):
        return self.kind.lower()

    @property
    def crd_name(self):
        return f"{self.plural}.{self.group}"


class CRDRegistry:
    """Singleton keyed by ``group/version/kind``; filled by ``register``."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._models = {}
        return cls._instance

    @classmethod
    def register(
        cls,
        group,
        version,
        kind,
        plural=None,
        scope="Namespaced",
        status_model=None,
        printer_columns=None,
    ):
        """Class decorator registering a spec model as a CRD.

        Args:
            group: API group, e.g. 'tenancy.x-k8s.io'
            version: API version, e.g. 'v1alpha1'
            kind: Kind name, e.g. 'VirtualCluster'
            plural: Plural name (defaults to kind.lower() + 's')
            scope: 'Namespaced' or 'Cluster'
            status_model: pydantic model describing .status
            printer_columns: additionalPrinterColumns entries
        """
        if scope not in SCOPES:
            raise ValueError(f"Invalid CRD scope: {scope}")

        def decorator(model_class):
            info = CRDInfo(
                model=model_class,
                group=group,
                version=version,
                kind=kind,
                plural=plural or f"{kind.lower()}s",
                scope=scope,
                status_model=status_model,
                printer_columns=list(printer_columns or []),
            )
            model_class._crd_kind = kind
            cls()._models[info.key] = info
            logger.debug(f"Registered CRD: {info.key}")
            return model_class

        return decorator

    def discover_models(self, package_paths=None):
        """Import every module under the model packages so their decorators run."""
        for package_path in package_paths or DEFAULT_MODEL_PACKAGES:
            try:
                package = importlib.import_module(package_path)
            except ImportError as e:
                logger.warning(f"Could not discover models in {package_path}: {e}")
                continue
            for module in pkgutil.iter_modules(getattr(package, "__path__", [])):
                importlib.import_module(f"{package_path}.{module.name}")

    def get_all_models(self):
        return dict(self._models)
