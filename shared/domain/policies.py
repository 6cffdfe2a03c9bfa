"""
Policy Engine & Enrollment Requirement Policies

Implements Strategy pattern for pluggable enrollment requirement checks:
prerequisites, co-requisites, anti-requisites and approval gates.
Schedule conflicts and capacity are not policies; the engine enforces them
directly.
"""

from abc import ABC, abstractmethod
from typing import Any
from uuid import UUID

import structlog
from pydantic import BaseModel, ConfigDict, Field

from shared.config import settings
from shared.domain.academic import Section

logger = structlog.get_logger(__name__)


class PolicyResult(BaseModel):
    """Result of policy evaluation."""

    model_config = ConfigDict(frozen=True)

    allowed: bool = Field(..., description="Whether action is allowed")
    reason: str = Field(..., description="Human-readable reason")
    violated_rules: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)


def parse_course_level(level: str | int | None) -> int:
    """Numeric course level; 'GRAD' counts as 500, unparseable as 0."""
    if level is None:
        return 0
    if isinstance(level, int):
        return level
    if level.strip().upper() == "GRAD":
        return 500
    try:
        return int(level)
    except ValueError:
        return 0


def _format_courses(ids: list[Any], labels: dict[Any, str]) -> str:
    return ", ".join(labels.get(course_id, str(course_id)) for course_id in ids)


class EnrollmentPolicy(ABC):
    """
    Abstract base class for enrollment policies (Strategy pattern).

    Each concrete policy implements one requirement rule.
    """

    def __init__(self, name: str, priority: int = 0):
        """
        Initialize policy.

        Args:
            name: Policy identifier
            priority: Execution priority (higher = earlier)
        """
        self.name = name
        self.priority = priority

    @abstractmethod
    async def evaluate(
        self,
        student_id: UUID,
        section_id: UUID,
        context: dict[str, Any],
    ) -> PolicyResult:
        """
        Evaluate if enrollment is allowed.

        Args:
            student_id: Student attempting to enroll
            section_id: Target section
            context: Requirement context built by a RequirementContextProvider

        Returns:
            PolicyResult: Evaluation result
        """

    def __lt__(self, other: "EnrollmentPolicy") -> bool:
        """Compare policies by priority for sorting."""
        return self.priority > other.priority  # Higher priority first


class PrerequisitePolicy(EnrollmentPolicy):
    """
    Policy that checks course prerequisites.

    Validates that student has completed all required prerequisite courses.
    """

    def __init__(self, priority: int = 100):
        super().__init__("prerequisite_check", priority)

    async def evaluate(
        self, student_id: UUID, section_id: UUID, context: dict[str, Any]
    ) -> PolicyResult:
        """
        Check if student has completed prerequisites.

        Context should include:
        - course_prerequisites: required course ids
        - student_completed_courses: completed course ids
        """
        prerequisites = list(context.get("course_prerequisites", []))
        completed = set(context.get("student_completed_courses", []))

        if not prerequisites:
            return PolicyResult(allowed=True, reason="No prerequisites required")

        missing = [prereq for prereq in prerequisites if prereq not in completed]

        if missing:
            labels = context.get("course_labels", {})
            return PolicyResult(
                allowed=False,
                reason=f"Missing prerequisites: {_format_courses(missing, labels)}",
                violated_rules=["prerequisite_requirement"],
                metadata={"missing_prerequisites": [str(m) for m in missing]},
            )

        return PolicyResult(allowed=True, reason="All prerequisites satisfied")


class CorequisitePolicy(EnrollmentPolicy):
    """Co-requisites must be completed or taken alongside (active this term)."""

    def __init__(self, priority: int = 95):
        super().__init__("corequisite_check", priority)

    async def evaluate(
        self, student_id: UUID, section_id: UUID, context: dict[str, Any]
    ) -> PolicyResult:
        corequisites = list(context.get("course_corequisites", []))
        completed = set(context.get("student_completed_courses", []))
        active = set(context.get("student_active_courses", []))

        missing = [c for c in corequisites if c not in completed and c not in active]
        if missing:
            labels = context.get("course_labels", {})
            return PolicyResult(
                allowed=False,
                reason=f"Co-requisites required: {_format_courses(missing, labels)}",
                violated_rules=["corequisite_requirement"],
                metadata={"missing_corequisites": [str(m) for m in missing]},
            )

        return PolicyResult(allowed=True, reason="Co-requisites satisfied")


class AntirequisitePolicy(EnrollmentPolicy):
    """Blocks enrollment when an anti-requisite is completed or active."""

    def __init__(self, priority: int = 90):
        super().__init__("antirequisite_check", priority)

    async def evaluate(
        self, student_id: UUID, section_id: UUID, context: dict[str, Any]
    ) -> PolicyResult:
        antirequisites = list(context.get("course_antirequisites", []))
        taken = set(context.get("student_completed_courses", [])) | set(
            context.get("student_active_courses", [])
        )

        blocked = [a for a in antirequisites if a in taken]
        if blocked:
            labels = context.get("course_labels", {})
            return PolicyResult(
                allowed=False,
                reason=f"Blocked by anti-requisites: {_format_courses(blocked, labels)}",
                violated_rules=["antirequisite_restriction"],
                metadata={"blocking_antirequisites": [str(b) for b in blocked]},
            )

        return PolicyResult(allowed=True, reason="No anti-requisite conflicts")


class DepartmentApprovalPolicy(EnrollmentPolicy):
    """Upper-level courses outside the student's department need approval."""

    def __init__(self, min_level: int | None = None, priority: int = 80):
        super().__init__("department_approval_check", priority)
        self.min_level = min_level if min_level is not None else settings.department_approval_min_level

    async def evaluate(
        self, student_id: UUID, section_id: UUID, context: dict[str, Any]
    ) -> PolicyResult:
        student_department = context.get("student_department_id")
        course_department = context.get("course_department_id")
        level = parse_course_level(context.get("course_level"))

        if (
            student_department
            and course_department
            and student_department != course_department
            and level >= self.min_level
        ):
            code = context.get("course_code", "this course")
            return PolicyResult(
                allowed=False,
                reason=f"Department approval required for {code}",
                violated_rules=["department_approval"],
                metadata={"course_level": level},
            )

        return PolicyResult(allowed=True, reason="No department approval needed")


class AdvisorApprovalPolicy(EnrollmentPolicy):
    """Senior-level courses need a minimum of completed credits."""

    def __init__(
        self, min_level: int | None = None, min_credits: int | None = None, priority: int = 70
    ):
        super().__init__("advisor_approval_check", priority)
        self.min_level = min_level if min_level is not None else settings.advisor_approval_min_level
        self.min_credits = (
            min_credits if min_credits is not None else settings.advisor_approval_min_credits
        )

    async def evaluate(
        self, student_id: UUID, section_id: UUID, context: dict[str, Any]
    ) -> PolicyResult:
        level = parse_course_level(context.get("course_level"))
        credits: int = context.get("student_completed_credits", 0)

        if level >= self.min_level and credits < self.min_credits:
            code = context.get("course_code", "this course")
            return PolicyResult(
                allowed=False,
                reason=(
                    f"Advisor approval required for {code}. "
                    f"You currently have {credits} completed credits."
                ),
                violated_rules=["advisor_approval"],
                metadata={"completed_credits": credits, "required_credits": self.min_credits},
            )

        return PolicyResult(allowed=True, reason="No advisor approval needed")


class PolicyEngine:
    """
    Policy evaluation engine that coordinates multiple policies.

    Executes policies in priority order and aggregates results.
    """

    def __init__(self):
        """Initialize policy engine."""
        self.policies: list[EnrollmentPolicy] = []

    def register_policy(self, policy: EnrollmentPolicy) -> None:
        """
        Register a policy with the engine.

        Args:
            policy: Policy to register
        """
        self.policies.append(policy)
        self.policies.sort()  # Sort by priority
        logger.info("Policy registered", policy_name=policy.name, priority=policy.priority)

    def unregister_policy(self, policy_name: str) -> bool:
        """
        Unregister a policy.

        Args:
            policy_name: Name of policy to remove

        Returns:
            bool: True if policy was found and removed
        """
        initial_count = len(self.policies)
        self.policies = [p for p in self.policies if p.name != policy_name]
        return len(self.policies) < initial_count

    async def evaluate_all(
        self, student_id: UUID, section_id: UUID, context: dict[str, Any]
    ) -> tuple[bool, list[PolicyResult]]:
        """
        Evaluate all registered policies.

        Args:
            student_id: Student ID
            section_id: Section ID
            context: Evaluation context

        Returns:
            Tuple of (all_allowed, list of results)
        """
        results: list[PolicyResult] = []

        for policy in self.policies:
            try:
                result = await policy.evaluate(student_id, section_id, context)
            except Exception as e:
                logger.error(
                    "Policy evaluation error",
                    policy=policy.name,
                    error=str(e),
                    student_id=str(student_id),
                    section_id=str(section_id),
                )
                results.append(
                    PolicyResult(
                        allowed=False,
                        reason=f"Policy evaluation error: {str(e)}",
                        violated_rules=["policy_execution_error"],
                        metadata={"policy": policy.name, "error": str(e)},
                    )
                )
                return False, results

            results.append(result)

            # Stop on first failure (fail-fast)
            if not result.allowed:
                logger.info(
                    "Policy evaluation failed",
                    policy=policy.name,
                    student_id=str(student_id),
                    section_id=str(section_id),
                    reason=result.reason,
                )
                return False, results

        return True, results

    def get_registered_policies(self) -> list[str]:
        """Get list of registered policy names."""
        return [p.name for p in self.policies]


class RequirementContextProvider(ABC):
    """Builds the policy context for a (student, section) pair from the catalog."""

    @abstractmethod
    async def build(self, student_id: UUID, section: Section) -> dict[str, Any]:
        """Return the context dict consumed by the requirement policies."""


class CourseRequirements(BaseModel):
    """Catalog facts about one course."""

    model_config = ConfigDict(frozen=True)

    course_id: UUID
    code: str = ""
    name: str = ""
    level: str | None = None
    credits: int = Field(default=3, ge=0)
    department_id: UUID | None = None
    prerequisites: frozenset[UUID] = frozenset()
    corequisites: frozenset[UUID] = frozenset()
    antirequisites: frozenset[UUID] = frozenset()


class StudentRecord(BaseModel):
    """Academic history facts about one student."""

    model_config = ConfigDict(frozen=True)

    student_id: UUID
    department_id: UUID | None = None
    completed_courses: frozenset[UUID] = frozenset()
    active_courses: frozenset[UUID] = frozenset()


class CatalogContextProvider(RequirementContextProvider):
    """Context provider backed by in-process course and student records."""

    def __init__(
        self,
        courses: dict[UUID, CourseRequirements] | None = None,
        students: dict[UUID, StudentRecord] | None = None,
    ):
        self.courses = courses or {}
        self.students = students or {}

    async def build(self, student_id: UUID, section: Section) -> dict[str, Any]:
        course = self.courses.get(section.course_id) if section.course_id else None
        student = self.students.get(student_id) or StudentRecord(student_id=student_id)
        if course is None:
            return {}

        completed_credits = sum(
            self.courses[c].credits for c in student.completed_courses if c in self.courses
        )
        return {
            "course_code": course.code,
            "course_level": course.level,
            "course_department_id": course.department_id,
            "course_prerequisites": list(course.prerequisites),
            "course_corequisites": list(course.corequisites),
            "course_antirequisites": list(course.antirequisites),
            "course_labels": {
                cid: f"{c.code} ({c.name})" if c.name else c.code
                for cid, c in self.courses.items()
            },
            "student_department_id": student.department_id,
            "student_completed_courses": set(student.completed_courses),
            "student_active_courses": set(student.active_courses),
            "student_completed_credits": completed_credits,
        }


def create_default_requirement_policy_engine() -> PolicyEngine:
    """
    Create policy engine with the standard requirement policies.

    Returns:
        PolicyEngine: Configured engine with standard policies
    """
    engine = PolicyEngine()

    engine.register_policy(PrerequisitePolicy(priority=100))
    engine.register_policy(CorequisitePolicy(priority=95))
    engine.register_policy(AntirequisitePolicy(priority=90))
    engine.register_policy(DepartmentApprovalPolicy(priority=80))
    engine.register_policy(AdvisorApprovalPolicy(priority=70))

    logger.info(
        "Default requirement policy engine created",
        policies=engine.get_registered_policies(),
    )

    return engine
