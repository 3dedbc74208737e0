import argparse
import json
import logging
import sys

from stringtune.pipeline.config_loader import ConfigLoader, UnknownConfigKeyError, parse_override
from stringtune.pipeline.engine import PitchEngine
from stringtune.pipeline.instrumentation import PipelineLogger
from stringtune.pipeline.stream import analyze_audio, load_audio
from stringtune.pipeline.tunings import TuningRegistry

# Configure logging
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Estimate string pitch over a recording and report tuning offsets")
    parser.add_argument("audio_path", help="Path to input audio file")
    parser.add_argument("--tuning", default="standard-e", help="Tuning scheme id (standard-e, flat-e, drop-d)")
    parser.add_argument("--preset", default=None, help="Instrument preset (acoustic, bass, electric-clean, ...)")
    parser.add_argument("--config", default=None, help="TOML file layered over the preset")
    parser.add_argument(
        "--set",
        dest="overrides",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Dotted config override, e.g. features.agc=true (repeatable)",
    )
    parser.add_argument("--sample_rate", type=int, default=48000, help="Engine sample rate; audio is resampled")
    parser.add_argument("--hop", type=int, default=None, help="Hop between blocks (default: block size)")
    parser.add_argument("--expected_hz", type=float, default=None, help="Target frequency for octave correction")
    parser.add_argument("--log_dir", default="results", help="Directory for JSONL session logs")
    parser.add_argument("--output_json", default=None, help="Write all frame results to this JSON file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log per-frame rejections")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    if args.verbose:
        logging.getLogger("stringtune").setLevel(logging.DEBUG)

    registry = TuningRegistry.with_defaults()
    if args.tuning not in registry:
        logger.error("Unknown tuning %r; known: %s", args.tuning, ", ".join(s.tuning_id for s in registry.list_tunings()))
        return 2

    loader = ConfigLoader()
    try:
        overrides = [parse_override(item) for item in args.overrides]
        config = loader.load(args.config, preset=args.preset, overrides=overrides, sample_rate=args.sample_rate)
    except (UnknownConfigKeyError, ValueError, FileNotFoundError) as e:
        logger.error("Invalid configuration: %s", e)
        return 2

    plog = PipelineLogger(base_dir=args.log_dir)
    plog.log_event("config", "provenance", loader.provenance)

    engine = PitchEngine(config, registry, pipeline_logger=plog)
    if args.expected_hz:
        engine.set_expected_frequency(args.expected_hz)
        engine.enable_octave_correction(True)

    with plog.timed("load", path=args.audio_path):
        y = load_audio(args.audio_path, config.sample_rate)
    detections = analyze_audio(y, config.sample_rate, engine, args.tuning, hop=args.hop, pipeline_logger=plog)

    for d in detections:
        r = d.result
        if r is None:
            continue
        flag = "ok" if r.in_tune else ("sharp" if r.cents > 0 else "flat")
        print(f"{d.time_s:8.3f}s  {r.frequency:8.2f} Hz  {r.note:>4}  {r.cents:+7.1f} c  conf={r.confidence:.2f}  {flag}")

    if args.output_json:
        with open(args.output_json, "w", encoding="utf-8") as f:
            json.dump([d.to_dict() for d in detections], f, indent=2)

    plog.finalize()
    logger.info("Session log written to %s", plog.run_dir)
    return 0


if __name__ == "__main__":
    sys.exit(main())
