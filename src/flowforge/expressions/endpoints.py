"""Formula API endpoints.

Formula problems are reported in the response body (`success: false`),
never as HTTP errors; only unknown functions and categories are 404s.
"""

from datetime import datetime
from typing import Any, Callable

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from flowforge.expressions.evaluator import EvaluationContext
from flowforge.expressions.service import ExpressionService


class ContextPayload(BaseModel):
    """Evaluation context sent by the client."""
    fields: dict[str, Any] = Field(default_factory=dict)
    variables: dict[str, Any] = Field(default_factory=dict)
    datasets: dict[str, list[dict[str, Any]]] = Field(default_factory=dict)
    now: datetime | None = None
    user: dict[str, Any] | None = None
    timezone: str | None = None
    locale: str | None = None

    def to_context(self) -> EvaluationContext:
        context = EvaluationContext(
            fields=self.fields,
            datasets=self.datasets,
            variables=self.variables,
            timezone=self.timezone,
        )
        if self.now is not None:
            context.now = self.now
        if self.user is not None:
            context.user = {**context.user, **self.user}
        if self.locale is not None:
            context.locale = self.locale
        return context


class EvaluateRequest(BaseModel):
    """Request body for evaluating one formula."""
    formula: str
    context: ContextPayload | None = None


class BatchFormula(BaseModel):
    id: str
    formula: str


class BatchEvaluateRequest(BaseModel):
    """Request body for evaluating several formulas in order."""
    formulas: list[BatchFormula]
    context: ContextPayload | None = None


class ValidateRequest(BaseModel):
    formula: str
    availableFields: list[str] | None = None


class FormulaRequest(BaseModel):
    formula: str


class SuggestionsRequest(BaseModel):
    formula: str
    position: int
    availableFields: list[str] = Field(default_factory=list)
    variables: list[str] = Field(default_factory=list)


def _context(payload: ContextPayload | None) -> EvaluationContext:
    return payload.to_context() if payload is not None else EvaluationContext()


def create_expressions_router(
    get_service: Callable[[], ExpressionService | None],
) -> APIRouter:
    """Create the formula router with an injected service."""
    router = APIRouter(prefix="/api/expressions", tags=["expressions"])

    def _service() -> ExpressionService:
        service = get_service()
        if service is None:
            raise HTTPException(500, "Expression service not initialized")
        return service

    @router.post("/evaluate")
    async def evaluate_formula(request: EvaluateRequest) -> dict[str, Any]:
        """Evaluate a formula against the given context."""
        result = _service().evaluate(request.formula, _context(request.context))
        return {"data": result.to_dict()}

    @router.post("/evaluate/batch")
    async def evaluate_batch(request: BatchEvaluateRequest) -> dict[str, Any]:
        """Evaluate formulas in order; earlier results are fields for later ones."""
        results = _service().evaluate_batch(
            {item.id: item.formula for item in request.formulas},
            _context(request.context),
        )
        return {"data": {key: result.to_dict() for key, result in results.items()}}

    @router.post("/validate")
    async def validate_formula(request: ValidateRequest) -> dict[str, Any]:
        """Check syntax and references without evaluating."""
        result = _service().validate(request.formula, request.availableFields)
        return {"data": result.to_dict()}

    @router.post("/parse")
    async def parse_formula(request: FormulaRequest) -> dict[str, Any]:
        """Return the AST of a formula."""
        return {"data": _service().parse(request.formula).to_dict()}

    @router.post("/tokenize")
    async def tokenize_formula(request: FormulaRequest) -> dict[str, Any]:
        """Return highlight spans for a formula."""
        tokens = _service().tokenize(request.formula)
        return {"data": [token.to_dict() for token in tokens]}

    @router.post("/suggestions")
    async def get_suggestions(request: SuggestionsRequest) -> dict[str, Any]:
        """Return autocomplete suggestions for the cursor position."""
        suggestions = _service().suggest(
            request.formula,
            request.position,
            request.availableFields,
            request.variables,
        )
        return {"data": [s.to_dict() for s in suggestions]}

    @router.get("/functions")
    async def list_functions() -> dict[str, Any]:
        """Return documentation for every function, grouped by category."""
        return {"data": _service().registry.export_documentation()}

    @router.get("/functions/categories")
    async def list_categories() -> dict[str, Any]:
        service = _service()
        return {
            "data": [
                {
                    "name": category.value,
                    "count": len(service.registry.list_by_category(category)),
                }
                for category in service.registry.categories()
            ]
        }

    @router.get("/functions/category/{category}")
    async def list_functions_in_category(category: str) -> dict[str, Any]:
        try:
            functions = _service().list_functions_by_category(category)
        except ValueError:
            raise HTTPException(404, f"Category not found: {category}") from None
        return {"data": [f.to_dict() for f in functions]}

    @router.get("/functions/{name}")
    async def get_function(name: str) -> dict[str, Any]:
        func_def = _service().get_function(name)
        if func_def is None:
            raise HTTPException(404, f"Function not found: {name}")
        return {"data": func_def.to_dict()}

    return router
