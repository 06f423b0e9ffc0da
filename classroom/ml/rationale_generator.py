"""
Grouping Rationale Generation

Explains a grouping result in teacher-friendly language. The narrator
service phrases the text when configured; otherwise, or whenever it fails,
a deterministic template enumerating each group's tier and gender mix is
used. Narration failures never propagate to the caller.
"""
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from classroom.ml.narrator_client import NarratorClient
from classroom.services.grouping_engine import GroupingMode, GroupingOutcome

logger = logging.getLogger(__name__)

SOURCE_NARRATOR = "narrator"
SOURCE_TEMPLATE = "template"


@dataclass(frozen=True)
class Rationale:
    text: str
    source: str


class RationaleGenerator:
    """
    Produces the rationale stored with every GroupingRun.

    Only the structured outcome (mode, counts, metrics) is sent to the
    narrator, never student names or free text.
    """

    def __init__(self, narrator: Optional[NarratorClient] = None):
        self.narrator = narrator or NarratorClient()

    async def explain(self, outcome: GroupingOutcome) -> Rationale:
        template = self.generate_template(outcome)

        if not self.narrator.enabled:
            return Rationale(text=template, source=SOURCE_TEMPLATE)

        try:
            text = await self.narrator.chat(self._build_prompt(outcome))
        except Exception as e:
            logger.warning(f"Narrator unavailable, using template rationale: {e}")
            return Rationale(text=template, source=SOURCE_TEMPLATE)

        return Rationale(text=text, source=SOURCE_NARRATOR)

    def _build_prompt(self, outcome: GroupingOutcome) -> str:
        summary = {
            "mode": outcome.mode.value,
            "group_count": outcome.group_count,
            "balance_score": outcome.metrics.get("balance_score"),
            "groups": [
                {
                    "group_number": g["group_number"],
                    "size": g["size"],
                    "tiers": g["tiers"],
                    "genders": g["genders"],
                }
                for g in outcome.metrics.get("groups", [])
            ],
        }
        return (
            "You are helping a teacher understand how students were split into "
            "small learning groups. Groups were balanced by ability tier (from a "
            "pretest ranking) and by gender. In 3-5 short sentences, explain why "
            "this arrangement supports peer learning. Do not invent numbers.\n\n"
            f"Grouping summary (JSON): {json.dumps(summary, sort_keys=True)}"
        )

    def generate_template(self, outcome: GroupingOutcome) -> str:
        """Deterministic rationale built only from the outcome's metrics"""
        metrics = outcome.metrics
        sections = [
            self._generate_main_statement(outcome),
            self._generate_groups_section(metrics.get("groups", [])),
            self._generate_balance_section(metrics),
        ]
        return "\n\n".join(s for s in sections if s)

    def _generate_main_statement(self, outcome: GroupingOutcome) -> str:
        total = outcome.metrics.get("total_students", 0)
        if outcome.mode is GroupingMode.AI:
            return (
                f"{total} students were arranged into {outcome.group_count} groups. "
                f"Each group mixes high, mid and low pretest performers so stronger "
                f"students can support peers, with genders spread as evenly as possible."
            )
        return (
            f"{total} students were arranged into {outcome.group_count} "
            f"{'group' if outcome.group_count == 1 else 'groups'} for a small class, "
            f"pairing pretest tiers so every group has a mentor."
        )

    def _generate_groups_section(self, groups: List[Dict[str, Any]]) -> str:
        if not groups:
            return ""

        lines = ["Group composition:"]
        for group in groups:
            tiers = group["tiers"]
            genders = group["genders"]
            line = (
                f"Group {group['group_number']} ({group['size']} students): "
                f"{tiers['HIGH']} high, {tiers['MID']} mid, {tiers['LOW']} low; "
                f"{genders['FEMALE']} female, {genders['MALE']} male"
            )
            if genders.get("OTHER"):
                line += f", {genders['OTHER']} other"
            lines.append(line)
        return "\n".join(lines)

    def _generate_balance_section(self, metrics: Dict[str, Any]) -> str:
        balanced = metrics.get("balanced_groups", 0)
        total = metrics.get("total_groups", 0)
        score = metrics.get("balance_score", 0)

        if total and balanced == total:
            return f"All {total} groups are gender-balanced (spread across groups: {score})."
        return (
            f"{balanced} of {total} groups are gender-balanced; the class roster "
            f"limits a perfect split (spread across groups: {score})."
        )


# Singleton instance
_rationale_generator_instance = None


def get_rationale_generator() -> RationaleGenerator:
    """Get singleton RationaleGenerator instance"""
    global _rationale_generator_instance
    if _rationale_generator_instance is None:
        _rationale_generator_instance = RationaleGenerator()
    return _rationale_generator_instance
