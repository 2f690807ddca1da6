#!/usr/bin/env python3
import argparse
import contextlib
import logging
import signal
import sys
import threading

import requests

from grounded_rag.app import Services, ask, build_services, load_app_config
from grounded_rag.errors import CollaboratorError, ConfigError, OperationCancelled
from grounded_rag.logging_utils import level_from_flags, setup_logging
from grounded_rag.settings import RuntimeSettings, parse_bool, parse_float, parse_int, parse_strategy
from grounded_rag.utils.output import FORMATS, write_output

logger = logging.getLogger(__name__)

# shell "settings" menu: label -> (field, parser)
TUNABLES = {
    "top_k": ("top_k", parse_int),
    "min_score": ("min_score", parse_float),
    "min_gap": ("min_gap", parse_float),
    "budget": ("max_context_chars_budget", parse_int),
    "chunk_chars_for_prompt": ("max_chunk_chars_for_prompt", parse_int),
    "strategy": ("chunk_strategy", parse_strategy),
    "chunk_size": ("chunk_size_chars", parse_int),
    "overlap": ("chunk_overlap_chars", parse_int),
    "min_chunk": ("min_chunk_chars", parse_int),
    "max_chunk": ("max_chunk_chars", parse_int),
    "temperature": ("chat_temperature", parse_float),
    "top_p": ("chat_top_p", parse_float),
    "num_ctx": ("chat_num_ctx", parse_int),
    "debug": ("show_debug", parse_bool),
}


@contextlib.contextmanager
def cancel_on_sigint():
    """First Ctrl-C sets the event; the running operation stops at its next checkpoint."""
    cancel = threading.Event()

    def _handler(signum, frame):
        if cancel.is_set():
            raise KeyboardInterrupt
        logger.warning("Cancellation requested; stopping at the next checkpoint ...")
        cancel.set()

    previous = signal.signal(signal.SIGINT, _handler)
    try:
        yield cancel
    finally:
        signal.signal(signal.SIGINT, previous)


def _print_chunks(title, chunks):
    print(f"\n=== {title} ===")
    for i, r in enumerate(chunks, start=1):
        print(f"[{i}] score={r.score:.4f} | {r.doc_id} | {r.section_title} | c{r.chunk_index} | {r.chunk_id}")
        preview = r.text.strip().replace("\n", " ")
        print(f"    {preview[:240]}{'...' if len(preview) > 240 else ''}")


def cmd_reset(services: Services, settings: RuntimeSettings):
    with cancel_on_sigint() as cancel:
        dim = services.ingestion.reset_collection(settings, cancel=cancel)
    print(f"Collection '{services.config.collection}' recreated (vector size={dim}).")


def cmd_ingest(services: Services, settings: RuntimeSettings):
    with cancel_on_sigint() as cancel:
        stats = services.ingestion.ingest(settings, cancel=cancel)
    print("\n=== INGEST ===")
    print(f"documents: {stats.documents}")
    print(f"chunks: {stats.chunks}")
    print(f"chars min/avg/max: {stats.min_chars} / {stats.avg_chars:.1f} / {stats.max_chars}")
    print(f"strategy: {settings.chunk_strategy.value}")


def cmd_ask(services: Services, settings: RuntimeSettings, question, out=None, fmt=None, save=None):
    with cancel_on_sigint() as cancel:
        result = ask(question, services, settings, cancel=cancel)

    if out or save:
        target = write_output(question, result, out_path=out, fmt=fmt, save_dir=save)
        print(f"[saved] {target}")

    print("\n=== ANSWER ===")
    print(result.answer_text.strip())

    print("\n=== SCORES ===")
    print(f"top1: {result.top1_score:.4f} | gap(top1-top2): {result.gap_top1_top2:.4f}")
    if result.is_ambiguous:
        print("WARNING: retrieval is ambiguous (top results are close); treat the answer with care.")

    if result.citations:
        print("\n=== CITATIONS ===")
        for c in result.citations:
            print(f"- {c}")

    if settings.show_debug or not result.is_valid_grounded_output:
        _print_chunks("RETRIEVED", result.retrieved)

    if not result.is_valid_grounded_output:
        if result.reason:
            print(f"\nreason: {result.reason}")
        print(f"Hint: try a larger top_k (currently {settings.top_k}) or rephrase the question.")
    return result


def cmd_retrieve(services: Services, settings: RuntimeSettings, question):
    with cancel_on_sigint() as cancel:
        hits = services.retriever.retrieve(question, settings.top_k, cancel=cancel)
    if not hits:
        print("The collection is empty (or returned nothing). Run 'ingest' first.")
        return hits
    _print_chunks(f"TOP {settings.top_k}", hits)
    return hits


def _print_settings(settings: RuntimeSettings):
    print("\n=== SETTINGS ===")
    for label, (field, _) in TUNABLES.items():
        value = getattr(settings, field)
        print(f"{label:>24}: {getattr(value, 'value', value)}")


def change_setting(settings: RuntimeSettings, label: str, raw: str) -> RuntimeSettings:
    """New validated snapshot; raises ConfigError and leaves `settings` untouched."""
    if label not in TUNABLES:
        raise ConfigError(f"unknown setting: {label!r}")
    field, parse = TUNABLES[label]
    return settings.updated(**{field: parse(raw, label)})


def run_shell(services: Services, settings: RuntimeSettings):
    menu = (
        "\n1) reset collection\n2) ingest\n3) ask\n4) retrieve\n"
        "5) show settings\n6) change setting\n0) exit"
    )
    while True:
        print(menu)
        try:
            choice = input("> ").strip()
        except EOFError:
            return
        try:
            if choice == "0":
                return
            elif choice == "1":
                cmd_reset(services, settings)
            elif choice == "2":
                cmd_ingest(services, settings)
            elif choice in ("3", "4"):
                question = input("question: ").strip()
                if not question:
                    continue
                if choice == "3":
                    cmd_ask(services, settings, question)
                else:
                    cmd_retrieve(services, settings, question)
            elif choice == "5":
                _print_settings(settings)
            elif choice == "6":
                label = input(f"setting ({', '.join(TUNABLES)}): ").strip()
                raw = input("value: ").strip()
                settings = change_setting(settings, label, raw)
                print(f"{label} updated; applies from the next operation.")
            else:
                print("Unknown option.")
        except ConfigError as e:
            logger.warning("%s (previous settings kept)", e)
        except OperationCancelled as e:
            logger.warning("%s", e)
        except (CollaboratorError, requests.RequestException) as e:
            logger.error("Operation failed: %s", e)


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog="grounded-rag",
        description="Local grounded RAG over markdown docs: chunk, retrieve, gate, answer with verified citations.",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable DEBUG logs (to stderr).")
    parser.add_argument("--quiet", "-q", action="store_true", help="Reduce logs to WARN and above.")
    parser.add_argument("--log-json", action="store_true", help="Emit logs as JSON lines (stderr).")
    parser.add_argument("--config", type=str, default="config.yaml")
    parser.add_argument(
        "--allow-remote",
        action="store_true",
        help="Override offline guard to allow non-local Ollama endpoints",
    )
    sub = parser.add_subparsers(dest="cmd", required=True)

    sub.add_parser("reset", help="Drop and recreate the vector collection")
    sub.add_parser("ingest", help="Chunk, embed and index the markdown documents")

    p_ask = sub.add_parser("ask", help="Answer a question with verified citations")
    p_ask.add_argument("question", type=str)
    p_ask.add_argument("--top-k", type=int, default=None, help="Override top_k for this question")
    p_ask.add_argument("--out", type=str, default=None, help="Write result to a file (format from extension)")
    p_ask.add_argument("--format", type=str, default=None, choices=list(FORMATS))
    p_ask.add_argument("--save", type=str, default=None, help="Directory to auto-save result")

    p_ret = sub.add_parser("retrieve", help="Show the top_k retrieved chunks")
    p_ret.add_argument("question", type=str)
    p_ret.add_argument("--top-k", type=int, default=None)

    sub.add_parser("shell", help="Interactive menu")

    args = parser.parse_args(argv)

    if args.verbose and args.quiet:
        print("Cannot use --verbose and --quiet together.", file=sys.stderr)
        return 2
    setup_logging(level=level_from_flags(args.verbose, args.quiet), json_logs=args.log_json)
    logger.debug("CLI args parsed: %s", vars(args))

    try:
        config = load_app_config(args.config)
        services = build_services(config, allow_remote=args.allow_remote)
        settings = config.runtime
        if getattr(args, "top_k", None) is not None:
            settings = settings.updated(top_k=args.top_k)

        if args.cmd == "reset":
            cmd_reset(services, settings)
        elif args.cmd == "ingest":
            cmd_ingest(services, settings)
        elif args.cmd == "ask":
            cmd_ask(services, settings, args.question, out=args.out, fmt=args.format, save=args.save)
        elif args.cmd == "retrieve":
            cmd_retrieve(services, settings, args.question)
        elif args.cmd == "shell":
            run_shell(services, settings)
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        return 2
    except OperationCancelled as e:
        logger.warning("%s", e)
        return 130
    except KeyboardInterrupt:
        logger.warning("Interrupted.")
        return 130
    except (CollaboratorError, requests.RequestException) as e:
        logger.error("Collaborator failure: %s", e)
        return 1
    except RuntimeError as e:
        # offline guard from make_llm
        logger.error("%s", e)
        return 2
    return 0


if __name__ == "__main__":
    sys.exit(main())
