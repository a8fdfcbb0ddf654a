"""Plugin contract for the VirtualCluster operator."""

from abc import ABC, abstractmethod
import logging

logger = logging.getLogger(__name__)


class PluginBase(ABC):
    """One unit of operator functionality.

    A plugin owns a set of CRD models, the kopf handlers watching them and
    whatever background tasks its controller needs. The registry drives the
    lifecycle: ``initialise`` once with the shared OperatorConfig,
    ``register_handlers``, ``start`` inside kopf's loop, then ``stop`` and
    ``shutdown`` on exit.
    """

    def __init__(self):
        self.config = None
        self._initialised = False

    @property
    @abstractmethod
    def name(self):
        """Unique key of the plugin in the registry."""

    @property
    @abstractmethod
    def version(self):
        pass

    @property
    @abstractmethod
    def description(self):
        pass

    @property
    @abstractmethod
    def models(self):
        """CRD spec models, each decorated with ``@CRDRegistry.register``."""

    @abstractmethod
    def register_handlers(self):
        """Import the handler modules so their kopf decorators run."""

    @property
    def initialised(self):
        return self._initialised

    def initialise(self, config=None):
        """Build the plugin's collaborators from ``config``.

        Returns:
            bool: False if setup failed; the plugin then stays inert
        """
        if self._initialised:
            logger.warning(f"Plugin {self.name} already initialised")
            return True

        logger.info(f"Initialising plugin: {self.name} v{self.version}")
        self.config = config
        unregistered = [m.__name__ for m in self.models if not hasattr(m, "_crd_kind")]
        if unregistered:
            logger.warning(
                f"Plugin {self.name} models without CRD registration: {', '.join(unregistered)}"
            )

        try:
            self._initialise_plugin()
        except Exception as e:
            logger.error(f"Failed to initialise plugin {self.name}: {e}")
            return False

        self._initialised = True
        logger.info(f"Plugin {self.name} initialised successfully")
        return True

    def _initialise_plugin(self):
        pass

    async def start(self):
        pass

    async def stop(self):
        pass

    def shutdown(self):
        """Drop references to controller state; the plugin can be initialised again."""
        if not self._initialised:
            return
        logger.info(f"Shutting down plugin: {self.name}")
        self._shutdown_plugin()
        self._initialised = False

    def _shutdown_plugin(self):
        pass

    def get_metadata(self):
        return {
            "name": self.name,
            "version": self.version,
            "description": self.description,
            "models": [model.__name__ for model in self.models],
            "initialised": self._initialised,
        }
