"""
Setup Verification Script
==========================
Quick smoke-test that checks whether every required dependency is
importable, OpenVINO can see a device, and the configured model directory
holds a model artifact plus tokenizer.json.

Run after setting up the virtual environment:
    python scripts/verify_setup.py

Exit codes:
    0  -- all checks passed
    1  -- one or more checks failed
"""

import importlib
import logging
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
logger = logging.getLogger(__name__)

# (module_name, display_name)
REQUIRED_PACKAGES = [
    ("numpy", "NumPy"),
    ("yaml", "PyYAML"),
    ("tqdm", "tqdm"),
    ("transformers", "HuggingFace transformers"),
    ("openvino", "OpenVINO"),
]


def check_python_version() -> bool:
    """Verify Python >= 3.9."""
    v = sys.version_info
    ok = v >= (3, 9)
    logger.info(
        "Python %d.%d.%d %s",
        v.major, v.minor, v.micro,
        "(OK)" if ok else "(FAIL: need >= 3.9)",
    )
    return ok


def check_package(module: str, display: str) -> bool:
    """Try to import a package and report its version if available."""
    try:
        mod = importlib.import_module(module)
    except ImportError:
        logger.warning("  %-30s  MISSING", display)
        return False
    version = getattr(mod, "__version__", "unknown")
    logger.info("  %-30s  %s", display, version)
    return True


def check_devices() -> bool:
    """Create a runtime environment and list its devices."""
    from embedder.errors import EmbedderError
    from embedder.runtime.environment import RuntimeEnvironment

    env = RuntimeEnvironment()
    try:
        devices = env.list_devices()
    except EmbedderError as exc:
        logger.warning("  %-30s  %s", "OpenVINO devices", exc)
        return False
    finally:
        env.destroy()
    logger.info("  %-30s  %s", "OpenVINO devices", ", ".join(devices) or "none")
    return bool(devices)


def check_model_dir() -> bool:
    """Verify the configured model directory holds the expected artifacts."""
    from embedder.config import load_encoder_config
    from embedder.errors import ConfigurationError

    try:
        config = load_encoder_config()
        model_file = config.resolve_model_file()
    except ConfigurationError as exc:
        logger.warning("  %-30s  %s", "Model artifact", exc)
        return False
    logger.info("  %-30s  %s", "Model artifact", model_file)

    if not config.tokenizer_path.is_file():
        logger.warning("  %-30s  NOT FOUND (%s)", "Tokenizer", config.tokenizer_path)
        return False
    logger.info("  %-30s  %s", "Tokenizer", config.tokenizer_path)
    return True


def main() -> None:
    logger.info("=" * 60)
    logger.info("OpenVINO Sentence Embedder -- Setup Verification")
    logger.info("=" * 60)

    all_ok = True

    logger.info("\n[1/4] Python version")
    all_ok &= check_python_version()

    logger.info("\n[2/4] Python packages")
    for module, display in REQUIRED_PACKAGES:
        all_ok &= check_package(module, display)

    logger.info("\n[3/4] OpenVINO devices")
    all_ok &= check_devices()

    logger.info("\n[4/4] Model directory")
    all_ok &= check_model_dir()

    logger.info("\n" + "=" * 60)
    if all_ok:
        logger.info("All required checks PASSED.")
    else:
        logger.error("Some checks FAILED.  Fix the issues above and re-run.")
    logger.info("=" * 60)

    sys.exit(0 if all_ok else 1)


if __name__ == "__main__":
    main()
