#!/usr/bin/env python3
"""
Stepformer — Walkthrough Script
=================================
Runs one sentence through every stage of the encoder-decoder and prints
what each stage computed, ending with the predicted translation.

Usage:
    # Default config:
    python scripts/walkthrough.py --config configs/default.yaml

    # Reproducible "We are best" → French example:
    python scripts/walkthrough.py --smoke-test

    # Override individual settings:
    python scripts/walkthrough.py --sentence "I love you" --language spanish \\
        --dim 8 --heads 4 --seed 7

    # Stop at a stage, show the snapshot, then continue:
    python scripts/walkthrough.py --smoke-test --pause-at decoder_start
"""

import argparse
import logging
import sys
from dataclasses import replace
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import numpy as np
from tqdm import tqdm

from stepformer.config import DECODER_MODES, StepformerConfig
from stepformer.data.translation import decoder_output_tokens, get_language_info
from stepformer.errors import StepformerError
from stepformer.pipeline import PipelineController, Stage, STAGE_ORDER

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)


# Add & Norm and feed-forward stages: the vectors handed to the next sublayer
VECTOR_OUTPUTS = {
    Stage.ADDNORM: "addnorm_outputs",
    Stage.FEEDFORWARD: "encoder_outputs",
    Stage.DECODER_ADDNORM1: "decoder_addnorm1_outputs",
    Stage.DECODER_ADDNORM2: "decoder_addnorm2_outputs",
    Stage.DECODER_FFN: "decoder_outputs",
}


def format_vector(vector) -> str:
    return np.array2string(np.asarray(vector), precision=3, suppress_small=True)


def summarize_stage(controller: PipelineController, stage: Stage) -> str:
    """One or two lines describing what a completed stage stored."""
    out = controller.stage_outputs(stage)

    if stage is Stage.TOKENIZING:
        return f"tokens: {list(out['tokens'])}"
    if stage in (Stage.EMBEDDING, Stage.DECODER_EMBEDDING):
        key = "embeddings" if stage is Stage.EMBEDDING else "decoder_embeddings"
        prefix = f"tokens: {list(out['decoder_tokens'])}\n" if "decoder_tokens" in out else ""
        return prefix + f"{len(out[key])} vectors, first = {format_vector(out[key][0])}"
    if stage in (Stage.POSITIONAL, Stage.DECODER_POSITIONAL):
        key = "encoder_inputs" if stage is Stage.POSITIONAL else "decoder_inputs"
        return f"embedding + PE, first = {format_vector(out[key][0])}"
    if stage in (Stage.ATTENTION, Stage.DECODER_MASKED_ATTENTION, Stage.DECODER_CROSS_ATTENTION):
        name = stage.outputs[0]
        weights = np.stack([result["weights"] for result in out[name]["results"]])
        return f"attention weights (query × key):\n{format_vector(weights)}"
    if stage is Stage.DECODER_START:
        return f"decoder mode: {out['decoder_mode']}"
    if stage is Stage.OUTPUT_PROJECTION:
        expected = decoder_output_tokens(
            list(controller.output("tokens")), controller.config.run.target_language,
        )
        return (
            f"vocabulary: {len(out['vocabulary'])} words, "
            f"predicted: {list(out['predicted_tokens'])}, expected: {expected}"
        )
    if stage is Stage.TRANSLATION_COMPLETE:
        marks = " ".join("✓" if match else "✗" for match in out["translation_matches"])
        return (
            f"translation: '{' '.join(out['translation'])}' "
            f"(reference: '{' '.join(out['reference_translation'])}')\n"
            f"matches: {marks}, accuracy: {out['accuracy']:.0f}%"
        )

    vectors = out[VECTOR_OUTPUTS[stage]]
    return f"{len(vectors)} vectors, first = {format_vector(vectors[0])}"


def build_config(args) -> StepformerConfig:
    if args.smoke_test:
        config = StepformerConfig.for_smoke_test()
    else:
        config = StepformerConfig.from_yaml(args.config)

    model_overrides = {}
    if args.dim is not None:
        model_overrides["d_model"] = args.dim
    if args.heads is not None:
        model_overrides["n_heads"] = args.heads
    if args.seed is not None:
        model_overrides["seed"] = args.seed

    run_overrides = {}
    if args.sentence is not None:
        run_overrides["sentence"] = args.sentence
    if args.language is not None:
        run_overrides["target_language"] = args.language
    if args.mode is not None:
        run_overrides["decoder_mode"] = args.mode

    return StepformerConfig(
        model=replace(config.model, **model_overrides),
        run=replace(config.run, **run_overrides),
    )


def main():
    parser = argparse.ArgumentParser(description="Stepformer Walkthrough")
    parser.add_argument("--config", type=str, default="configs/default.yaml")
    parser.add_argument("--smoke-test", action="store_true")
    parser.add_argument("--sentence", type=str, default=None)
    parser.add_argument("--language", type=str, default=None,
                        help="Target language (overrides config)")
    parser.add_argument("--dim", type=int, default=None,
                        help="d_model (overrides config)")
    parser.add_argument("--heads", type=int, default=None,
                        help="Number of attention heads (overrides config)")
    parser.add_argument("--seed", type=int, default=None,
                        help="Seed for the random weights")
    parser.add_argument("--mode", choices=DECODER_MODES, default=None,
                        help="Decoder mode (overrides config)")
    parser.add_argument("--pause-at", type=str, default=None,
                        help="Pause when this stage is reached, print a snapshot, then resume")
    args = parser.parse_args()

    config = build_config(args)
    language = get_language_info(config.run.target_language)
    logger.info(f"\n{config}")
    logger.info(f"Target language: {language['name']} ({language['native_name']})")

    pause_at = Stage.parse(args.pause_at) if args.pause_at else None

    controller = PipelineController()
    try:
        controller.submit(config)
    except StepformerError as exc:
        logger.error(f"Cannot start walkthrough: {exc}")
        sys.exit(1)

    pbar = tqdm(total=len(STAGE_ORDER), desc="Stages", unit="stage")

    def on_stage(stage: Stage) -> None:
        previous = stage.previous()
        tqdm.write(f"\n[{previous.value}]\n{summarize_stage(controller, previous)}")
        pbar.update(1)
        pbar.set_postfix(stage=stage.value, phase=stage.phase.value)
        if stage is pause_at:
            controller.pause()

    controller.run(on_stage=on_stage)

    if controller.is_paused:
        snapshot = controller.snapshot()
        tqdm.write(
            f"\n⏸ Paused at '{snapshot.current_stage.value}' ({snapshot.phase} phase), "
            f"{len(snapshot.completed_stages)} stages completed, "
            f"{len(snapshot.outputs)} outputs stored"
        )
        controller.resume(on_stage=on_stage)

    final = controller.current_stage
    tqdm.write(f"\n[{final.value}]\n{summarize_stage(controller, final)}")
    pbar.update(1)
    pbar.close()

    translation = " ".join(controller.output("translation"))
    logger.info("=" * 60)
    logger.info(f"'{config.run.sentence}' → '{translation}' ({controller.output('accuracy'):.0f}% match)")
    logger.info("Weights are random and untrained; the words will rarely match the reference.")
    logger.info("=" * 60)


if __name__ == "__main__":
    main()
