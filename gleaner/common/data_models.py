"""Pydantic models for completed entities.

Extractors assemble an entity across several hops and only know it is
whole at the last one, so they emit ``Model.raw(...)`` and the engine
validates it once, just before forwarding it downstream.
"""

from datetime import date
from typing import Any, Generic, TypeVar

from pydantic import (
    BaseModel,
    ValidationError,
    ValidationInfo,
    field_validator,
)
from sqlmodel import Field, SQLModel

from gleaner.common.exceptions import DataFormatAssumptionException

M = TypeVar("M", bound=BaseModel)
T = TypeVar("T", bound="ScrapedData")


class DeferredValidation(Generic[M]):
    """Unvalidated field values bound to the model that will check them.

    Example:
        pending = Review.raw(request_url=doc.url, title="...", score=8.5)
        yield ParsedData(pending)

        # in the engine
        review = pending.confirm()  # raises DataFormatAssumptionException
    """

    def __init__(
        self,
        model_class: type[M],
        request_url: str = "",
        **data: Any,
    ) -> None:
        self._model_class = model_class
        self._request_url = request_url
        self._data = data

    def confirm(self) -> M:
        """Validate and return the model instance.

        Raises:
            DataFormatAssumptionException: If validation fails.
        """
        try:
            return self._model_class.model_validate(self._data)
        except ValidationError as e:
            raise DataFormatAssumptionException(
                errors=[dict(err) for err in e.errors()],
                failed_doc=self._data,
                model_name=self._model_class.__name__,
                request_url=self._request_url,
            ) from e

    @property
    def raw_data(self) -> dict[str, Any]:
        return self._data.copy()

    @property
    def model_name(self) -> str:
        return self._model_class.__name__

    @property
    def request_url(self) -> str:
        return self._request_url


class ScrapedData(SQLModel):
    """Base class for extracted entities with a ``raw()`` constructor."""

    @classmethod
    def raw(
        cls: type[T], request_url: str = "", **data: Any
    ) -> DeferredValidation[T]:
        """Wrap raw field values for validation at emit time.

        Args:
            request_url: URL reported if validation later fails.
            **data: Field values, unvalidated.
        """
        return DeferredValidation(cls, request_url, **data)


class Review(ScrapedData):
    """A completed game review.

    ``locator`` is the review page URL as it appeared on the listing and
    identifies the review in storage.
    """

    title: str = Field(min_length=1)
    locator: str = Field(min_length=1)
    platforms: list[str] = Field(min_length=1)
    tags: list[str] = Field(default_factory=list)
    reviewer: str | None = None
    score: float = Field(ge=0, le=10)
    published: date | None = None
    summary: str | None = None
    pros: list[str] = Field(default_factory=list)
    cons: list[str] = Field(default_factory=list)

    @field_validator("platforms", "tags", "pros", "cons")
    @classmethod
    def _strip_labels(
        cls, values: list[str], info: ValidationInfo
    ) -> list[str]:
        # Order preserved, blanks and duplicates dropped
        seen: dict[str, None] = {}
        for value in values:
            cleaned = value.strip()
            if cleaned:
                seen.setdefault(cleaned, None)
        if info.field_name == "platforms" and not seen:
            raise ValueError("at least one platform is required")
        return list(seen)
