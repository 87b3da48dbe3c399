"""
Domain exceptions raised by the service layer.

The HTTP-facing ones subclass HTTPException so FastAPI renders them without
extra handlers. UnknownStatusError is a plain LookupError.
"""
from typing import Dict, List, Optional

from fastapi import HTTPException, status


class NotFoundError(HTTPException):
    """Referenced lead/project/note/template/user does not exist"""
    def __init__(self, detail: str = "Not found"):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


class ConflictError(HTTPException):
    """Unique name or e-mail already taken"""
    def __init__(self, detail: str):
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)


class DomainValidationError(HTTPException):
    """Input passed schema validation but violates a business rule"""
    def __init__(self, errors: Dict[str, List[str]], message: Optional[str] = None):
        self.errors = errors
        first = next(iter(errors.values()), [""])
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"message": message or (first[0] if first else "Invalid data"), "errors": errors},
        )


class LoginRequired(HTTPException):
    """No actor on a browser route; rendered as a redirect to the login page"""
    def __init__(self, login_path: str):
        self.login_path = login_path
        super().__init__(status_code=status.HTTP_303_SEE_OTHER, detail="Login required", headers={"Location": login_path})


class UnknownStatusError(LookupError):
    """A project status code has no label; the vocabulary and label table drifted apart"""
