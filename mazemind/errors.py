"""
Error taxonomy for the cognitive engine.

Only configuration errors and construction defects are raised to callers.
Failures of the external generation/embedding services are recovered
locally and surface as GenerationTimeout / GenerationParseFailure values
on request outcomes.
"""


class CognitionError(Exception):
    """Base class for all engine errors"""


class ConfigurationError(CognitionError, ValueError):
    """Invalid configuration detected at initialization"""


class MalformedRecordError(CognitionError, ValueError):
    """A memory record was rejected (bad importance or kind)"""


class InvalidTimeWindow(CognitionError):
    """Child plan windows do not tile their parent's window exactly"""


class InvalidPlanTransition(CognitionError):
    """A plan node was moved out of a terminal status"""


class GenerationTimeout(CognitionError):
    """The generation service did not answer in time"""


class GenerationParseFailure(CognitionError):
    """The generation service answered without the expected fields"""
