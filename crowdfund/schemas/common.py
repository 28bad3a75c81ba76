from pydantic import BaseModel, Field, ConfigDict
from pydantic.alias_generators import to_camel
from typing import Generic, List, Literal, Optional, TypeVar

T = TypeVar("T")


class CamelModel(BaseModel):
    """Base schema: snake_case in Python, camelCase on the wire"""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class PageParams(CamelModel):
    """Zero-based page request"""
    page: int = Field(default=0, ge=0, description="Page number, starting at 0")
    size: int = Field(default=10, ge=1, le=100, description="Page size")
    sort_by: str = Field(default="createdAt", description="Field to sort by")
    sort_dir: Literal["asc", "desc"] = Field(default="desc", description="Sort direction")

    @property
    def offset(self) -> int:
        return self.page * self.size


class PaginationInfo(CamelModel):
    current_page: int
    total_pages: int
    total_elements: int
    size: int


class Page(CamelModel, Generic[T]):
    """Paginated list response"""
    items: List[T]
    pagination: PaginationInfo

    @classmethod
    def build(cls, items: List[T], params: PageParams, total: int) -> "Page[T]":
        total_pages = (total + params.size - 1) // params.size if total else 0
        return cls(
            items=items,
            pagination=PaginationInfo(
                current_page=params.page,
                total_pages=total_pages,
                total_elements=total,
                size=params.size,
            ),
        )


class ErrorResponse(BaseModel):
    """Error body returned for every handled failure"""
    error: str
    message: Optional[str] = None

    model_config = ConfigDict(
        json_schema_extra={
            "example": {"error": "NotFound", "message": "Campaign not found with id: 42"}
        }
    )


class MessageResponse(CamelModel):
    message: str


class CountResponse(CamelModel):
    count: int
