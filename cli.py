"""
OpenVINO Sentence Embedder -- Command Line Interface
======================================================
Entry point for all user-facing operations.

Commands:
  encode   -- Encode texts into embedding vectors
  inspect  -- Show a model's declared inputs/outputs and resolved output layout
  devices  -- List available OpenVINO hardware devices

Usage examples:
  python cli.py encode "Hello world" "Another sentence"
  python cli.py encode --file sentences.txt --output vectors.npy
  python cli.py inspect --model-path models/all-MiniLM-L6-v2
  python cli.py devices

Settings are read from configs/settings.yaml; command-line options
override the ``encoder`` section.
"""

import argparse
import json
import logging
import sys
from pathlib import Path

import numpy as np

from embedder.config import load_encoder_config
from embedder.embeddings.encoder import EmbeddingEncoder
from embedder.errors import EmbedderError
from embedder.runtime.environment import RuntimeEnvironment
from embedder.runtime.shapes import describe_ports, resolve_output_spec


def setup_logging(verbose: bool = False) -> None:
    """Configure root logger."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _config_from_args(args: argparse.Namespace):
    return load_encoder_config(
        args.settings,
        model_path=args.model_path,
        output_name=args.output_name,
        max_seq_len=args.max_seq_len,
        device=args.device,
    )


# ===================================================================
# Command handlers
# ===================================================================

def cmd_encode(args: argparse.Namespace) -> None:
    """Encode texts from the command line or a file (one text per line)."""
    texts = list(args.texts)
    if args.file:
        lines = Path(args.file).read_text(encoding="utf-8").splitlines()
        texts.extend(line for line in lines if line.strip())
    if not texts:
        print("No texts to encode.")
        return

    config = _config_from_args(args)
    if args.skip_normalize:
        config = config.with_overrides(skip_normalize=True)

    with EmbeddingEncoder(config) as encoder:
        vectors = encoder.encode(texts, show_progress=args.progress)

    if args.output:
        out = Path(args.output)
        out.parent.mkdir(parents=True, exist_ok=True)
        np.save(str(out), vectors)
        print(f"Saved {vectors.shape[0]} x {vectors.shape[1]} embeddings to {out}")
        return

    for text, vec in zip(texts, vectors):
        preview = ", ".join(f"{x:.4f}" for x in vec[:8])
        print(f"{text[:40]!r:44s} [{preview}{', ...' if len(vec) > 8 else ''}]")


def cmd_inspect(args: argparse.Namespace) -> None:
    """Print the model's declared ports and the resolved output layout."""
    config = _config_from_args(args)
    model_file = config.resolve_model_file()

    env = RuntimeEnvironment()
    try:
        model = env.read_model(model_file)
        inputs, outputs = describe_ports(model)

        print(f"\n{'='*60}")
        print(f"Model: {model_file}")
        print(f"{'='*60}\n")
        print("Inputs:")
        for p in inputs:
            print(f"  {p.name:24s} {p.element_type:10s} {list(p.dims) if p.dims else 'dynamic rank'}")
        print("Outputs:")
        for p in outputs:
            print(f"  {p.name:24s} {p.element_type:10s} {list(p.dims) if p.dims else 'dynamic rank'}")

        spec = resolve_output_spec(
            model, config.input_ids_name, config.attention_mask_name, config.output_name
        )
        print(
            "\n" + json.dumps(
                {
                    "output": spec.output_name,
                    "rank": spec.rank,
                    "hidden_size": spec.hidden_size,
                    "pooled": spec.pooled,
                    "extra_inputs": list(spec.extra_inputs),
                },
                indent=2,
            )
        )
    finally:
        env.destroy()
    print(f"\n{'='*60}")


def cmd_devices(args: argparse.Namespace) -> None:
    """List available OpenVINO devices."""
    print(f"\n{'='*60}")
    print("OpenVINO Device Discovery")
    print(f"{'='*60}\n")
    env = RuntimeEnvironment()
    try:
        devices = env.list_devices()
        if devices:
            for d in devices:
                props = env.device_properties(d)
                name = props.get("FULL_DEVICE_NAME", "")
                print(f"  {d:8s}  {name}")
        else:
            print("  No devices found.")
    finally:
        env.destroy()
    print(f"\n{'='*60}")


# ===================================================================
# Argument parser
# ===================================================================

def _add_model_options(p: argparse.ArgumentParser) -> None:
    p.add_argument(
        "--model-path",
        type=str,
        default=None,
        dest="model_path",
        help="Directory holding the model artifact and tokenizer.json",
    )
    p.add_argument(
        "--output-name",
        type=str,
        default=None,
        dest="output_name",
        help="Model output to read (e.g. last_hidden_state, sentence_embedding)",
    )
    p.add_argument(
        "--max-seq-len",
        type=int,
        default=None,
        dest="max_seq_len",
        help="Truncation length in tokens (clamped to 512)",
    )
    p.add_argument(
        "--device",
        type=str,
        default=None,
        help="OpenVINO device: CPU, GPU, NPU, AUTO",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="embedder",
        description="Sentence embeddings from ONNX / OpenVINO IR models on OpenVINO Runtime.",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--settings",
        type=str,
        default=None,
        help="Path to settings.yaml (default: configs/settings.yaml)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # -- encode --
    p_encode = subparsers.add_parser(
        "encode",
        help="Encode texts into embedding vectors",
    )
    p_encode.add_argument(
        "texts",
        nargs="*",
        help="Texts to encode",
    )
    p_encode.add_argument(
        "--file",
        type=str,
        default=None,
        help="Read additional texts from a file, one per line",
    )
    p_encode.add_argument(
        "--output",
        type=str,
        default=None,
        help="Save the vectors to a .npy file instead of printing them",
    )
    p_encode.add_argument(
        "--skip-normalize",
        action="store_true",
        dest="skip_normalize",
        help="Return raw (not L2-normalised) vectors",
    )
    p_encode.add_argument(
        "--progress",
        action="store_true",
        help="Show a progress bar",
    )
    _add_model_options(p_encode)
    p_encode.set_defaults(func=cmd_encode)

    # -- inspect --
    p_inspect = subparsers.add_parser(
        "inspect",
        help="Show declared model inputs/outputs and the resolved output layout",
    )
    _add_model_options(p_inspect)
    p_inspect.set_defaults(func=cmd_inspect)

    # -- devices --
    p_devices = subparsers.add_parser(
        "devices",
        help="List available OpenVINO hardware devices",
    )
    p_devices.set_defaults(func=cmd_devices)

    return parser


# ===================================================================
# Main entry point
# ===================================================================

def main() -> None:
    parser = build_parser()
    args = parser.parse_args()

    setup_logging(verbose=getattr(args, "verbose", False))

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    try:
        args.func(args)
    except KeyboardInterrupt:
        print("\nInterrupted by user.")
        sys.exit(130)
    except EmbedderError as exc:
        logging.error("%s: %s", type(exc).__name__, exc)
        sys.exit(2)
    except Exception as exc:
        logging.error("Command failed: %s", exc, exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
