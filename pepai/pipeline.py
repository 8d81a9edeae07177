"""
Drill Pipeline - Complete end-to-end drill generation.

This orchestrates one paid AI action:
1. Billing check and deduction (when a user is known)
2. Streaming generation or refinement
3. Normalization
4. Validation (structural + semantic)
5. Optional save to the user's history

Usage:
    from pepai.pipeline import DrillPipeline

    pipeline = DrillPipeline(generator)
    result = await pipeline.generate("5v5 rondo")
"""

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import dataclass
from typing import List, Optional

from .billing import BillingGate, Capability, Currency
from .config import Settings, configure_logging
from .errors import PepAIError, public_message
from .generator import DrillGenerator, collect
from .normalizer import normalize_drill
from .renderer import render
from .schema import Drill
from .store import DrillStore
from .validator import ValidationResult, validate_drill

logger = logging.getLogger(__name__)


@dataclass
class PipelineResult:
    """Result of one pipeline run"""
    drill: Drill
    validation: ValidationResult
    saved_id: Optional[str] = None

    @property
    def is_valid(self) -> bool:
        return self.validation.is_valid

    @property
    def errors(self) -> List[str]:
        return [e.message for e in self.validation.errors]

    @property
    def warnings(self) -> List[str]:
        return [w.message for w in self.validation.warnings]

    def to_dict(self) -> dict:
        data = {"drill": self.drill.to_dict(), "validation": self.validation.to_dict()}
        if self.saved_id:
            data["savedId"] = self.saved_id
        return data


class DrillPipeline:
    """
    Complete pipeline for generating and refining drills.

    Example:
        pipeline = DrillPipeline(DrillGenerator(), store=store, billing=BillingGate(store))
        result = await pipeline.generate("Finishing under pressure", user_id="u1", save=True)
        if not result.is_valid:
            print("Errors:", result.errors)
    """

    def __init__(
        self,
        generator: DrillGenerator,
        store: Optional[DrillStore] = None,
        billing: Optional[BillingGate] = None,
    ):
        self.generator = generator
        self.store = store
        self.billing = billing

    def _charge(self, user_id: Optional[str], currency: Currency):
        if self.billing is not None:
            self.billing.check_and_deduct(user_id, currency)

    def _finish(self, drill: Drill, goal: str, user_id: Optional[str], save: bool) -> PipelineResult:
        validation = validate_drill(drill, goal=goal)
        for warning in validation.warnings:
            logger.info("Drill %s: %s", drill.id, warning.message)

        result = PipelineResult(drill=drill, validation=validation)
        if save and validation.is_valid and self.store is not None:
            if self.billing is not None:
                self.billing.require_capability(user_id, Capability.SAVE)
            result.saved_id = self.store.save_drill(user_id, drill)
        return result

    async def generate(
        self,
        prompt: str,
        user_id: Optional[str] = None,
        currency: Currency = Currency.CREDITS,
        save: bool = False,
    ) -> PipelineResult:
        """
        Generate, validate and optionally save a drill.

        Raises:
            BillingError: the user cannot pay for the action
            PepAIError: generation failed
        """
        events = self.generator.stream_generate(prompt)
        self._charge(user_id, currency)
        drill = normalize_drill(await collect(events))
        logger.info("Generated drill %s (%s)", drill.id, drill.name)
        return self._finish(drill, prompt, user_id, save)

    async def refine(
        self,
        drill: Drill,
        instruction: str,
        user_id: Optional[str] = None,
        currency: Currency = Currency.CREDITS,
        save: bool = False,
    ) -> PipelineResult:
        """Refine a drill in place (the drill id is kept)"""
        events = self.generator.stream_refine(drill, instruction)
        self._charge(user_id, currency)
        refined = normalize_drill(await collect(events), existing_id=drill.id)
        logger.info("Refined drill %s", refined.id)
        return self._finish(refined, instruction, user_id, save)


# ============================================================
# CLI
# ============================================================

def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Generate soccer drill diagrams",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Generate a rondo
  python -m pepai.pipeline "5v5 rondo" -o rondo.svg

  # Refine an existing drill
  python -m pepai.pipeline "add a second ball" --from-json rondo.json --json rondo2.json
        """
    )
    parser.add_argument("prompt", help="Drill description or refinement instruction")
    parser.add_argument("-o", "--output", type=str, help="Render the drill to this SVG/PNG path")
    parser.add_argument("--json", type=str, help="Also save JSON to this path")
    parser.add_argument("--from-json", type=str, help="Refine the drill in this JSON file")
    args = parser.parse_args(argv)

    settings = Settings.from_env()
    configure_logging(settings.log_level)

    try:
        generator = DrillGenerator(api_key=settings.anthropic_api_key, model=settings.model)
        pipeline = DrillPipeline(generator)
        if args.from_json:
            with open(args.from_json) as f:
                drill = normalize_drill(json.load(f))
            result = asyncio.run(pipeline.refine(drill, args.prompt))
        else:
            result = asyncio.run(pipeline.generate(args.prompt))
    except PepAIError as e:
        print(f"Error: {public_message(e, settings.dev_mode)}", file=sys.stderr)
        return 1

    drill = result.drill
    print("\n" + "=" * 50)
    print(f"DRILL: {drill.name}")
    print("=" * 50)
    print(f"Categories: {', '.join(c.value for c in drill.categories)}")
    print(f"Duration: {drill.duration}  Players: {drill.players}  Layout: {drill.layout.value}")
    print(f"\nSetup: {drill.setup}")
    print("\nInstructions:")
    for i, step in enumerate(drill.instructions, 1):
        print(f"  {i}. {step}")
    print("\nCoaching Points:")
    for point in drill.coaching_points:
        print(f"  - {point}")

    if result.warnings:
        print("\nWarnings:")
        for warning in result.warnings:
            print(f"  - {warning}")

    if args.output:
        print(f"\nDiagram: {render(drill, args.output)}")
    if args.json:
        with open(args.json, "w") as f:
            json.dump(drill.to_dict(), f, indent=2)
        print(f"JSON: {args.json}")

    return 0 if result.is_valid else 2


if __name__ == "__main__":
    sys.exit(main())
