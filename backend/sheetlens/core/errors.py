"""
Error message constants, exception types and utilities for user-friendly error handling.
"""
from typing import Any, Dict, Optional

# Error codes
class ErrorCodes:
    FILE_TOO_LARGE = "FILE_TOO_LARGE"
    FILE_EMPTY = "FILE_EMPTY"
    INVALID_FILE_TYPE = "INVALID_FILE_TYPE"
    PARSE_ERROR = "PARSE_ERROR"
    PROCESSING_ERROR = "PROCESSING_ERROR"
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    CHART_NOT_FOUND = "CHART_NOT_FOUND"
    REGENERATION_LIMIT = "REGENERATION_LIMIT"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"

# User-friendly error messages
ERROR_MESSAGES: Dict[str, Dict[str, str]] = {
    ErrorCodes.FILE_TOO_LARGE: {
        "message": "Oops! Your file is a bit too large",
        "detail": "Your file exceeds our size limit to keep things fast for everyone.",
        "suggestion": "💡 Try splitting your file into smaller parts, or export just the columns you need."
    },
    ErrorCodes.FILE_EMPTY: {
        "message": "Hmm, your file looks empty",
        "detail": "We couldn't find any data rows in the file you uploaded.",
        "suggestion": "💡 Make sure the first row holds the column names and that there is data below it."
    },
    ErrorCodes.INVALID_FILE_TYPE: {
        "message": "We need a CSV or Excel file",
        "detail": "We can read .csv and .xlsx files.",
        "suggestion": "💡 Export your sheet as CSV or Excel. Most tools have a 'Download as CSV' option in the File menu."
    },
    ErrorCodes.PARSE_ERROR: {
        "message": "We're having trouble reading your file",
        "detail": "The file might be corrupted, have no worksheets, or be in an unexpected format.",
        "suggestion": "💡 Try saving your file again as a fresh CSV or Excel file."
    },
    ErrorCodes.PROCESSING_ERROR: {
        "message": "Something went wrong while processing",
        "detail": "We hit a snag while analyzing your data.",
        "suggestion": "💡 Check that your file has headers in the first row and that your data is organized in columns."
    },
    ErrorCodes.SESSION_NOT_FOUND: {
        "message": "This analysis has expired",
        "detail": "We couldn't find the analysis you are working on. It may have been replaced by a newer upload.",
        "suggestion": "💡 Upload your file again to start a fresh analysis."
    },
    ErrorCodes.CHART_NOT_FOUND: {
        "message": "We couldn't find that chart",
        "detail": "The chart you asked to change is not part of this analysis.",
        "suggestion": "💡 Refresh the dashboard and try again."
    },
    ErrorCodes.REGENERATION_LIMIT: {
        "message": "That's all the alternatives for this chart",
        "detail": "You've reached the maximum number of alternatives for this chart slot.",
        "suggestion": "💡 Upload the file again to get a fresh set of recommendations."
    },
    ErrorCodes.RATE_LIMIT_EXCEEDED: {
        "message": "Whoa there! Slow down a bit",
        "detail": "We limit requests to keep the service fast for everyone.",
        "suggestion": "💡 Take a quick break and try again in about a minute."
    },
    ErrorCodes.UNKNOWN_ERROR: {
        "message": "Hmm, something unexpected happened",
        "detail": "We encountered an issue we weren't expecting. Don't worry - it's not your fault!",
        "suggestion": "💡 Give it another try in a moment."
    }
}


class SheetLensError(Exception):
    """Base class for pipeline errors."""
    code: str = ErrorCodes.PROCESSING_ERROR


class ParseError(SheetLensError):
    """The uploaded file could not be turned into rows. Fatal for the pipeline."""
    code = ErrorCodes.PARSE_ERROR

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        if code:
            self.code = code


class SchemaMismatchError(SheetLensError):
    """A recommendation references a column that is not in the dataset."""

    def __init__(self, field: str, value: Any):
        super().__init__(f"{field} '{value}' does not match any column")
        self.field = field
        self.value = value


class AIResponseError(SheetLensError):
    """The AI service returned text without a usable JSON payload."""


class RegenerationLimitExceeded(SheetLensError):
    """A chart slot has used up its alternatives."""
    code = ErrorCodes.REGENERATION_LIMIT

    def __init__(self, chart_id: str, attempts: int, limit: int):
        super().__init__(
            f"Chart '{chart_id}' reached the limit of {limit} alternatives ({attempts} requested)"
        )
        self.chart_id = chart_id
        self.attempts = attempts
        self.limit = limit


class UnsupportedChartType(SheetLensError):
    """A recommendation names a chart kind we cannot render."""

    def __init__(self, chart_type: Any):
        super().__init__("Unsupported chart type")
        self.chart_type = chart_type


def get_error_response(error_code: str, additional_detail: Optional[str] = None) -> Dict[str, str]:
    """
    Get user-friendly error response for an error code.

    Args:
        error_code: One of the ErrorCodes constants
        additional_detail: Optional additional detail to append

    Returns:
        Dictionary with code, message, detail, and suggestion
    """
    error_info = ERROR_MESSAGES.get(error_code, ERROR_MESSAGES[ErrorCodes.UNKNOWN_ERROR])

    response = {
        "code": error_code,
        "message": error_info["message"],
        "detail": error_info["detail"],
        "suggestion": error_info["suggestion"]
    }

    if additional_detail:
        response["detail"] = f"{response['detail']} {additional_detail}"

    return response
