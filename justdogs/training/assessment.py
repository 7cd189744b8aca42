"""Dog assessment questionnaire and program recommendations.

Prospective parents answer the questionnaire before they have an account.
The result is kept under a six digit code, and the parent redeems the code
later to create the dog's profile.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Sequence

from .errors import ValidationError

AGGRESSION = ("Aggression towards people", "Aggression towards other dogs")
COMPLEX_ISSUES = ("Separation anxiety", "Excessive barking", "Destructive behavior")
SOCIAL_WARNINGS = ("Sometimes aggressive", "Often aggressive")
LOW_EXPERIENCE = ("No formal training", "Basic commands only")
HIGH_ENERGY = ("Very High", "High")
EXERCISE_GOALS = ("Exercise and stimulation", "General well-being")

PRIVATE_TRAINING = "Private Training"
TUTORING = "Tutoring (Private training add on)"
DOG_JOG = "The Dog Jog Walking and Socialisation Service"
COMPLEX_CONSULT = "Behavioral Consultation (Complex)"
MINI_CONSULT = "Behavioral Consultation (Mini)"
SOCIAL_ASSESSMENT = "Social Assessment"
ENRICHMENT = "Private Activity & Enrichment Service"


@dataclass(frozen=True)
class Question:
    id: str
    question: str
    type: str
    category: str
    required: bool
    options: tuple[str, ...] = ()


QUESTIONS: tuple[Question, ...] = (
    Question(
        "age",
        "How old is your dog?",
        "select",
        "basic",
        True,
        ("Puppy (0-1 year)", "Young (1-3 years)", "Adult (3-7 years)", "Senior (7+ years)"),
    ),
    Question("breed", "What breed is your dog?", "text", "basic", True),
    Question(
        "size",
        "What size is your dog?",
        "select",
        "basic",
        True,
        ("Small (under 25 lbs)", "Medium (25-60 lbs)", "Large (60-100 lbs)", "Extra Large (100+ lbs)"),
    ),
    Question(
        "energyLevel",
        "How would you describe your dog's energy level?",
        "select",
        "behavior",
        True,
        ("Very Low", "Low", "Moderate", "High", "Very High"),
    ),
    Question(
        "behaviorIssues",
        "What behavioral issues does your dog have? (Select all that apply)",
        "checkbox",
        "behavior",
        False,
        (
            "Separation anxiety",
            "Aggression towards people",
            "Aggression towards other dogs",
            "Excessive barking",
            "Destructive behavior",
            "House training issues",
            "Pulling on leash",
            "Jumping on people",
            "Fear/anxiety",
            "Resource guarding",
            "None of the above",
        ),
    ),
    Question(
        "socialization",
        "How does your dog interact with other dogs?",
        "select",
        "behavior",
        True,
        (
            "Very friendly",
            "Generally friendly",
            "Neutral/cautious",
            "Sometimes aggressive",
            "Often aggressive",
            "Unknown/untested",
        ),
    ),
    Question(
        "trainingExperience",
        "What's your dog's training experience?",
        "select",
        "behavior",
        True,
        (
            "No formal training",
            "Basic commands only",
            "Some training classes",
            "Well trained",
            "Professional training",
        ),
    ),
    Question(
        "healthIssues",
        "Does your dog have any health issues or special needs?",
        "checkbox",
        "health",
        False,
        (
            "Mobility issues",
            "Hearing problems",
            "Vision problems",
            "Chronic illness",
            "Medication needs",
            "Dietary restrictions",
            "None",
        ),
    ),
    Question(
        "environment",
        "What's your living situation?",
        "select",
        "environment",
        True,
        ("Apartment", "House with yard", "House without yard", "Farm/rural", "Other"),
    ),
    Question(
        "familySituation",
        "Who lives with the dog?",
        "checkbox",
        "environment",
        True,
        ("Just me", "Partner/spouse", "Children", "Other pets", "Elderly family members"),
    ),
    Question(
        "goals",
        "What are your main goals for your dog?",
        "checkbox",
        "behavior",
        True,
        (
            "Basic obedience",
            "Behavioral improvement",
            "Socialization",
            "Exercise and stimulation",
            "Bonding and relationship",
            "Preparing for specific activities",
            "General well-being",
        ),
    ),
)


def _as_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value else []
    return list(value)


def _as_text(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        return value[0] if value else ""
    return value or ""


def validate_answers(answers: Mapping[str, Any]) -> None:
    missing = []
    for question in QUESTIONS:
        if not question.required:
            continue
        value = answers.get(question.id)
        if question.type == "checkbox":
            if not _as_list(value):
                missing.append(question.id)
        elif not _as_text(value).strip():
            missing.append(question.id)
    if missing:
        raise ValidationError(f"Unanswered assessment questions: {', '.join(missing)}")


def _any(selected: Sequence[str], candidates: Sequence[str]) -> bool:
    return any(item in selected for item in candidates)


def recommend(answers: Mapping[str, Any]) -> dict:
    """Return the dog profile and recommended programs for ``answers``."""

    behavior_issues = _as_list(answers.get("behaviorIssues"))
    health_issues = _as_list(answers.get("healthIssues"))
    goals = _as_list(answers.get("goals"))
    energy_level = _as_text(answers.get("energyLevel"))
    experience = _as_text(answers.get("trainingExperience"))
    socialization = _as_text(answers.get("socialization"))

    urgency = "low"
    if _any(behavior_issues, AGGRESSION):
        urgency = "high"
    elif len(behavior_issues) > 2 or "Separation anxiety" in behavior_issues:
        urgency = "medium"

    if _any(behavior_issues, AGGRESSION):
        primary = COMPLEX_CONSULT
        reasoning = "Aggression issues require immediate professional intervention with a qualified behaviorist."
    elif _any(behavior_issues, COMPLEX_ISSUES):
        primary = COMPLEX_CONSULT
        reasoning = "Complex behavioral issues require comprehensive assessment and behavior modification."
    elif socialization in SOCIAL_WARNINGS:
        primary = SOCIAL_ASSESSMENT
        reasoning = "Social issues require professional assessment to determine the best approach."
    elif experience in LOW_EXPERIENCE:
        primary = MINI_CONSULT
        reasoning = "Starting with a mini consultation to assess needs and create a training plan."
    elif energy_level in HIGH_ENERGY:
        primary = ENRICHMENT
        reasoning = "High energy dogs benefit from structured activities and mental stimulation."
    elif _any(goals, EXERCISE_GOALS):
        primary = DOG_JOG
        reasoning = "Regular exercise and socialization will improve overall well-being."
    else:
        primary = PRIVATE_TRAINING
        reasoning = "Structured training sessions will help achieve your goals."

    secondary = []
    if primary != PRIVATE_TRAINING:
        secondary.append(PRIVATE_TRAINING)
    if experience == "No formal training":
        secondary.append(TUTORING)
    if primary != DOG_JOG and energy_level == "High":
        secondary.append(DOG_JOG)

    return {
        "dog_profile": {
            "age": _as_text(answers.get("age")),
            "breed": _as_text(answers.get("breed")),
            "size": _as_text(answers.get("size")),
            "energy_level": energy_level,
            "behavior_issues": behavior_issues,
            "health_issues": health_issues,
            "environment": _as_text(answers.get("environment")),
            "experience": experience,
        },
        "recommendations": {
            "primary_program": primary,
            "secondary_programs": secondary,
            "reasoning": reasoning,
            "urgency": urgency,
        },
    }


def _estimated_age(bucket: str) -> float:
    if "Puppy" in bucket:
        return 0.5
    if "Young" in bucket:
        return 2
    if "Adult" in bucket:
        return 5
    return 8


def _estimated_weight(bucket: str) -> float:
    if "Extra Large" in bucket:
        return 120
    if "Small" in bucket:
        return 15
    if "Medium" in bucket:
        return 40
    if "Large" in bucket:
        return 80
    return 120


def dog_fields_from_assessment(result: Mapping, *, name: str, owner_id: str) -> dict:
    """Build the fields of a new dog profile from an assessment result."""

    profile = result["dog_profile"]
    program = result["recommendations"]["primary_program"]
    health = profile.get("health_issues") or []
    behavior = profile.get("behavior_issues") or []
    if behavior:
        behavioral_notes = f"Behavioral issues: {', '.join(behavior)}. Recommended program: {program}"
    else:
        behavioral_notes = f"Recommended program: {program}"
    return {
        "name": name,
        "breed": profile.get("breed") or "Unknown",
        "age": _estimated_age(profile.get("age", "")),
        "weight": _estimated_weight(profile.get("size", "")),
        "owner_id": owner_id,
        "medical_notes": f"Health issues: {', '.join(health)}" if health else None,
        "behavioral_notes": behavioral_notes,
        "preferences": (
            f"Energy level: {profile.get('energy_level', '')}. "
            f"Environment: {profile.get('environment', '')}"
        ),
    }
