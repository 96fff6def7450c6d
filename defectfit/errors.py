"""Project-wide exception types."""


class DefectFitError(Exception):
    """Base exception for all analysis errors."""


class InputError(DefectFitError):
    """Raised when the record set cannot be analysed at all."""


class EmptyDatasetError(InputError):
    """Raised when no batch records are supplied."""

    def __init__(self, message="no batch records supplied; load data before running the analysis"):
        super().__init__(message)


class InvalidRecordError(InputError):
    """Raised when a batch record violates 0 <= defects <= total."""

    def __init__(self, row, reason):
        self.row = row
        self.reason = reason
        super().__init__(f"invalid record in row {row}: {reason}")


class EmptySampleError(InputError):
    """Raised when outlier filtering removes every defect count."""

    def __init__(self, message="sample empty after outlier filtering"):
        super().__init__(message)


class DegenerateSampleError(InputError):
    """Raised when sample moments are not finite."""


class ConfigError(DefectFitError):
    """Raised when configuration is missing or malformed."""


class ConfigValidationError(ConfigError):
    """Raised when validation fails for supplied configuration."""


class DataSourceError(DefectFitError):
    """Raised when an imported file cannot be turned into batch records."""


class ExportError(DefectFitError):
    """Raised when a report cannot be generated."""
