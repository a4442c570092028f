"""Extract an ImplementationPlan from a fenced JSON block in model output.

Recovery grammar: every parse failure maps to one corrective user message
that the planning loop sends back; the loop's iteration budget bounds how
many times that can happen.
"""

import json
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from pydantic import ValidationError

from .base import ImplementationPlan

logger = logging.getLogger(__name__)

PLAN_BLOCK_RE = re.compile(r"```json\s*([\s\S]*?)\s*```")


class PlanParseError(str, Enum):
    NO_BLOCK = "no_block"
    INVALID_JSON = "invalid_json"
    EMPTY_FILES = "empty_files"


CORRECTIVE_MESSAGES = {
    PlanParseError.NO_BLOCK: (
        "Please provide the implementation plan as a JSON block with at least one file."
    ),
    PlanParseError.INVALID_JSON: (
        "Your plan JSON could not be parsed. Respond with ONLY a valid ```json block "
        "containing summary, approach, files, estimatedComplexity and considerations."
    ),
    PlanParseError.EMPTY_FILES: (
        "Your plan has no files. You MUST use glob_files and read_file first, then provide "
        "a plan with specific files. Please call glob_files now."
    ),
}

USE_TOOLS_MESSAGE = (
    "You must use the tools to explore the codebase. "
    "Please call glob_files with an appropriate pattern."
)


@dataclass
class PlanParseOutcome:
    plan: Optional[ImplementationPlan] = None
    error: Optional[PlanParseError] = None
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.plan is not None

    @property
    def corrective_message(self) -> Optional[str]:
        return CORRECTIVE_MESSAGES.get(self.error) if self.error else None


def parse_plan(text: Optional[str], max_files: int = 8) -> PlanParseOutcome:
    """Parse the first ```json block in ``text``.

    A plan with an empty or missing ``files`` list is rejected. Plans longer
    than ``max_files`` are kept but truncated.
    """
    match = PLAN_BLOCK_RE.search(text or "")
    if not match:
        return PlanParseOutcome(error=PlanParseError.NO_BLOCK)

    try:
        data = json.loads(match.group(1))
    except json.JSONDecodeError as e:
        logger.warning(f"Failed to parse plan JSON: {e}")
        return PlanParseOutcome(error=PlanParseError.INVALID_JSON, detail=str(e))

    if not isinstance(data, dict):
        return PlanParseOutcome(error=PlanParseError.INVALID_JSON, detail="plan is not an object")

    if not data.get("files"):
        return PlanParseOutcome(error=PlanParseError.EMPTY_FILES)

    try:
        plan = ImplementationPlan.model_validate(data)
    except ValidationError as e:
        logger.warning(f"Plan JSON did not match the expected shape: {e}")
        return PlanParseOutcome(error=PlanParseError.INVALID_JSON, detail=str(e))

    if not plan.files:
        return PlanParseOutcome(error=PlanParseError.EMPTY_FILES)

    if len(plan.files) > max_files:
        logger.warning(f"⚠️ Plan lists {len(plan.files)} files, truncating to {max_files}")
        plan = plan.model_copy(update={"files": plan.files[:max_files]})

    return PlanParseOutcome(plan=plan)
