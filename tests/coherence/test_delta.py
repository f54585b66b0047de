from __future__ import annotations

import pytest

from longform.coherence.delta import extract_delta, negate_commitment, split_sentences
from longform.coherence.schema import Skeleton


@pytest.fixture
def skeleton() -> Skeleton:
    return Skeleton(
        thesis="Knowledge begins with experience.",
        outline=("Intro",),
        key_terms={"Experience": "what the senses give", "category": "pure concept", "noumenon": "thing in itself"},
        commitments=(
            "Kant asserts that knowledge begins with experience",
            "Kant accepts the reality of space",
            "Kant thinks metaphysics is possible",
        ),
    )


@pytest.mark.parametrize(
    ("commitment", "expected"),
    [
        ("Kant asserts X", "Kant rejects X"),
        ("Kant rejects X", "Kant asserts X"),
        ("Hume denies that causes are seen", "Hume affirms that causes are seen"),
        ("Mill supports liberty but opposes paternalism", "Mill opposes liberty but supports paternalism"),
        ("Asserts nothing", "Rejects nothing"),
    ],
)
def test_negate_commitment_swaps_each_verb_once(commitment: str, expected: str) -> None:
    assert negate_commitment(commitment) == expected


def test_negate_commitment_without_verb_returns_none() -> None:
    assert negate_commitment("Kant thinks metaphysics is possible") is None


def test_split_sentences_ignores_short_fragments() -> None:
    sentences = split_sentences("Short one. This sentence is clearly long enough! Ok? Another long sentence follows here")

    assert sentences == ["This sentence is clearly long enough", "Another long sentence follows here"]


def test_extract_delta_collects_claims_and_terms(skeleton: Skeleton) -> None:
    text = (
        "[P1] Kant would argue that experience supplies the matter of knowledge. "
        "Tiny claim here. "
        "The category of causality is a position we must examine carefully. "
        "Nothing else of note is said in this sentence at all."
    )

    delta = extract_delta(text, skeleton)

    assert delta.claims_added == (
        "[P1] Kant would argue that experience supplies the matter of knowledge",
        "The category of causality is a position we must examine carefully",
    )
    assert delta.terms_used == ("Experience", "category")
    assert delta.conflicts_detected == ()
    assert delta.continuity_notes == f"Chunk produced {len(text.split())} words"


def test_extract_delta_limits_and_truncates_claims(skeleton: Skeleton) -> None:
    sentence = "Critics claim " + "very " * 40 + "much"
    text = ". ".join([sentence] * 8) + "."

    delta = extract_delta(text, skeleton, claim_limit=3, claim_chars=50)

    assert len(delta.claims_added) == 3
    assert all(len(claim) == 50 for claim in delta.claims_added)


def test_extract_delta_detects_negated_commitment(skeleton: Skeleton) -> None:
    text = "In this chunk KANT   REJECTS that knowledge\nbegins with experience, which is new."

    delta = extract_delta(text, skeleton)

    assert delta.conflicts_detected == (
        "Potential contradiction with commitment: Kant asserts that knowledge begins with experience",
    )


def test_extract_delta_restating_commitment_is_not_a_conflict(skeleton: Skeleton) -> None:
    text = "As established, Kant asserts that knowledge begins with experience and Kant accepts the reality of space."

    assert extract_delta(text, skeleton).conflicts_detected == ()


def test_extract_delta_empty_text(skeleton: Skeleton) -> None:
    delta = extract_delta("", skeleton)

    assert delta.claims_added == ()
    assert delta.terms_used == ()
    assert delta.continuity_notes == "Chunk produced 0 words"


def test_long_subject_restating_commitment_is_not_a_conflict() -> None:
    commitment = "John Michael Kuczynski the philosopher asserts that meaning is use"
    skeleton = Skeleton(thesis="Meaning is use.", commitments=(commitment,))

    assert extract_delta(f"To repeat: {commitment}.", skeleton).conflicts_detected == ()

    negated = "John Michael Kuczynski the philosopher rejects that meaning is use"
    assert extract_delta(f"Later, {negated}.", skeleton).conflicts_detected == (
        f"Potential contradiction with commitment: {commitment}",
    )


def test_extract_delta_is_repeatable(skeleton: Skeleton) -> None:
    text = (
        "Kant would argue that experience supplies the matter of every category. "
        "Elsewhere Kant rejects that knowledge begins with experience at all."
    )
    before = skeleton.model_dump()

    first = extract_delta(text, skeleton)
    second = extract_delta(text, skeleton)

    assert first == second
    assert first.claims_added and first.terms_used and first.conflicts_detected
    assert skeleton.model_dump() == before
