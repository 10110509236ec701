"""blobscope CLI: inspect protobuf blobs from files or stdin."""

import argparse
import logging
import sys
from importlib.metadata import version as get_version, PackageNotFoundError
from pathlib import Path
from typing import Optional


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _fail(message: str, code: int = 1) -> None:
    print(f"Error: {message}", file=sys.stderr)
    sys.exit(code)


def main(argv: Optional[list] = None):
    """Main CLI entry point for blobscope commands."""
    try:
        blobscope_version = get_version("blobscope")
    except PackageNotFoundError:
        blobscope_version = "dev"

    parser = argparse.ArgumentParser(
        prog="blobscope",
        description="blobscope: inspect protobuf blobs with or without a schema"
    )
    parser.add_argument("--version", action="version", version=f"blobscope {blobscope_version}")
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Log debug output (candidate scores, scan details) to stderr."
    )
    # Common arguments
    parent_parser = argparse.ArgumentParser(add_help=False)
    parent_parser.add_argument(
        "blob",
        type=str,
        help="Path to the blob file, or '-' for stdin"
    )
    parent_parser.add_argument(
        "--base64",
        action="store_true",
        help="Blob file holds base64 text rather than raw bytes."
    )
    parent_parser.add_argument(
        "--json",
        action="store_true",
        help="Print canonical JSON (sorted keys, compact) instead of text."
    )

    descriptor_parser = argparse.ArgumentParser(add_help=False)
    descriptor_parser.add_argument(
        "--descriptor",
        type=Path,
        required=True,
        help="Path to a serialized FileDescriptorSet (protoc --descriptor_set_out)"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser(
        "wire",
        help="Show the schema-less wire-format tree",
        parents=[parent_parser]
    )
    subparsers.add_parser(
        "hex",
        help="Show a hex preview of the blob",
        parents=[parent_parser]
    )

    types_parser = subparsers.add_parser(
        "types",
        help="List message types defined by a descriptor set"
    )
    types_parser.add_argument(
        "--descriptor",
        type=Path,
        required=True,
        help="Path to a serialized FileDescriptorSet"
    )

    decode_parser = subparsers.add_parser(
        "decode",
        help="Decode the blob as a given message type",
        parents=[parent_parser, descriptor_parser]
    )
    decode_parser.add_argument(
        "--type",
        dest="type_name",
        required=True,
        help="Message type name (qualified, or a unique simple name)"
    )

    detect_parser = subparsers.add_parser(
        "detect",
        help="Auto-detect the message type of the blob",
        parents=[parent_parser, descriptor_parser]
    )
    detect_parser.add_argument(
        "--min-confidence",
        type=float,
        default=None,
        help="Confidence floor for auto-detection (0-1)"
    )

    inspect_parser = subparsers.add_parser(
        "inspect",
        help="Inspect the blob as a data-grid cell (manual type > mapping > auto-detect)",
        parents=[parent_parser]
    )
    inspect_parser.add_argument(
        "--descriptor",
        type=Path,
        default=None,
        help="Path to a serialized FileDescriptorSet"
    )
    inspect_parser.add_argument(
        "--type",
        dest="type_name",
        default=None,
        help="Manually selected message type"
    )
    inspect_parser.add_argument(
        "--mapping",
        type=Path,
        default=None,
        help="Path to mapping JSON: {\"source_column\": ..., \"value_to_type\": {...}}"
    )
    inspect_parser.add_argument(
        "--row",
        type=Path,
        default=None,
        help="Path to row JSON (column name -> value) for the mapping"
    )
    inspect_parser.add_argument(
        "--view",
        choices=["decoded", "wire", "hex"],
        default="decoded",
        help="View mode"
    )
    inspect_parser.add_argument(
        "--min-confidence",
        type=float,
        default=None,
        help="Confidence floor for auto-detection (0-1)"
    )

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    _configure_logging(args.verbose)

    try:
        _run_command(args)
    except FileNotFoundError as e:
        _fail(str(e))
    except ValueError as e:
        # bad --min-confidence, mapping or row JSON
        _fail(str(e))


def _run_command(args: argparse.Namespace) -> None:
    """Run one subcommand. Every path ends in sys.exit."""
    # Lazy imports: only load the engine when a command runs
    from blobscope import api
    from blobscope._internal.io import read_blob, read_descriptor, read_json
    from blobscope._internal.json_text import dumps
    from blobscope.kernel.errors import ScanError
    from blobscope.kernel.render import format_json

    def _emit(text_output: str, json_output=None) -> None:
        if args.json and json_output is not None:
            print(dumps(json_output, canonical=True))
        else:
            print(text_output)

    def _load_registry(path: Path):
        registry = api.DescriptorRegistry()
        result = api.load_descriptor(registry, path.stem, read_descriptor(path))
        if not result.ok:
            _fail(result.error.message)
        for type_name, reasons in result.unusable_types.items():
            print(f"Warning: {type_name} is unusable: {'; '.join(reasons)}", file=sys.stderr)
        return registry, path.stem

    def _weights():
        if args.min_confidence is None:
            return None
        return api.ScoringWeights(min_confidence=args.min_confidence)

    if args.command == "types":
        registry, name = _load_registry(args.descriptor)
        for type_name in api.message_types(registry, name):
            print(type_name)
        sys.exit(0)

    try:
        data = read_blob(args.blob, is_base64=args.base64)
    except ScanError as exc:
        _fail(exc.message)
    except OSError as exc:
        _fail(str(exc))

    if args.command == "hex":
        view = api.hex_view(data)
        _emit(f"{view.text}\n{view.size} bytes", view.model_dump())
        sys.exit(0)

    if args.command == "wire":
        scanned = api.scan_blob(data)
        if not scanned.ok:
            _fail(f"cannot parse as wire format: {scanned.error.message}")
        tree = api.wire_view(data)
        _emit(format_json(tree), tree)
        sys.exit(0)

    if args.command == "decode":
        registry, name = _load_registry(args.descriptor)
        result = api.decode(registry, name, args.type_name, data)
        if not result.ok:
            _fail(result.error.message)
        _emit(result.text, api.to_jsonable(result.value))
        sys.exit(0)

    if args.command == "detect":
        registry, name = _load_registry(args.descriptor)
        result = api.classify(data, registry, name, _weights())
        if result is None:
            print("No message type matched; showing wire format instead.", file=sys.stderr)
            tree = api.wire_view(data)
            if tree is None:
                _fail("cannot parse as wire format")
            _emit(format_json(tree), tree)
            sys.exit(2)
        _emit(
            f"# {result.type_name} (confidence {result.confidence:.2f})\n{api.format_value(result.decoded)}",
            {"type": result.type_name, "confidence": result.confidence,
             "value": api.to_jsonable(result.decoded)},
        )
        sys.exit(0)

    if args.command == "inspect":
        from blobscope.cell import CellRequest, Decoded, ViewMode, inspect
        from blobscope.kernel.mapping import ColumnTypeMapping

        registry = api.DescriptorRegistry()
        descriptor_name = None
        if args.descriptor is not None:
            registry, descriptor_name = _load_registry(args.descriptor)
        mapping = ColumnTypeMapping.model_validate(read_json(args.mapping)) if args.mapping else None
        row = read_json(args.row) if args.row else {}
        request = CellRequest(
            value=data,
            descriptor_name=descriptor_name,
            mapping=mapping,
            row=row,
            manual_type=args.type_name,
            view_mode=ViewMode(args.view),
            weights=_weights() or api.ScoringWeights(),
        )
        state = inspect(request, registry)
        if not isinstance(state, Decoded):
            _fail(state.error.message)
        if state.type_name:
            print(f"# {state.type_name} ({state.source.value})", file=sys.stderr)
        json_value = api.to_jsonable(state.value) if state.view_mode == ViewMode.DECODED else state.value
        _emit(state.text, json_value)
        sys.exit(0)


if __name__ == "__main__":
    main()
