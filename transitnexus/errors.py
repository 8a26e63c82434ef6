"""Exception hierarchy shared across ingestion, serving and event handling."""


class NexusError(Exception):
    """Base class for all transit nexus errors."""


class ConfigurationError(NexusError):
    """Invalid static configuration, detected before any import starts."""


class RegistryError(ConfigurationError):
    pass


class DependencyCycleError(ConfigurationError):
    def __init__(self, members):
        self.members = list(members)
        super().__init__(f"Linked dataset cycle detected between: {', '.join(self.members)}")


class MissingCredentialsError(ConfigurationError):
    def __init__(self, dataset_id: str, missing):
        self.dataset_id = dataset_id
        self.missing = list(missing)
        super().__init__(f"Dataset {dataset_id} requires credentials: {', '.join(self.missing)}")


class FetchError(NexusError):
    """Network or authentication failure while downloading a dataset."""


class ParseError(NexusError):
    """Malformed payload handed to a feed parser."""


class CacheDecodeError(NexusError):
    pass


class AckError(NexusError):
    """Queue acknowledgment failed; the owning worker must not continue."""
