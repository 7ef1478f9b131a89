"""
Simple CLI for running the claim pipeline locally.

Usage:
    claim-flow convert claim.json [--ocr-for-all-pdfs] [--no-llm] [--output out.json]
    claim-flow health

claim.json:
    {"claimId": "CLM-1", "hospitalId": "default",
     "documents": [{"fileName": "discharge.pdf", "filePath": "discharge.pdf"}]}

Relative ``filePath`` values are resolved against the claim file's directory.
"""

from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path

from rich.console import Console
from rich.table import Table

console = Console()


def app() -> None:
    import argparse

    parser = argparse.ArgumentParser(
        prog="claim-flow",
        description="Clinical PDFs to NHCX claim bundles",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    # convert sub-command
    p_convert = sub.add_parser("convert", help="Convert a claim's documents into FHIR bundles")
    p_convert.add_argument("claim", type=Path, help="Path to the claim JSON file")
    p_convert.add_argument("--ocr-for-all-pdfs", action="store_true", help="OCR every PDF before reading its text layer")
    p_convert.add_argument("--no-llm", action="store_true", help="Disable LLM enrichment")
    p_convert.add_argument("--concurrency", type=int, help="Documents processed in parallel")
    p_convert.add_argument("--output", type=Path, help="Write JSON output to this file")

    # health sub-command
    sub.add_parser("health", help="Check the OCR backend and the model it will use")

    args = parser.parse_args()

    if args.command == "convert":
        _cmd_convert(args)
    elif args.command == "health":
        _cmd_health(args)


def _load_claim(path: Path) -> dict:
    try:
        claim = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        console.print(f"[red]Cannot read claim file {path}: {exc}[/red]")
        sys.exit(1)
    if not isinstance(claim, dict):
        console.print("[red]Claim file must contain a JSON object[/red]")
        sys.exit(1)

    for doc in claim.get("documents") or []:
        if isinstance(doc, dict) and doc.get("filePath"):
            file_path = Path(doc["filePath"])
            if not file_path.is_absolute():
                doc["filePath"] = str(path.parent / file_path)
    return claim


async def _run_convert(claim: dict, args):
    from claim_flow.config import settings
    from claim_flow.extraction import ExtractionEngine, OcrAdapter, OcrBackendClient
    from claim_flow.pipeline.enrichment import OllamaEnricher
    from claim_flow.pipeline.orchestrator import convert_claim_documents

    use_llm = settings.llm_enrichment_enabled and not args.no_llm
    async with OcrBackendClient() as ocr_client:
        engine = ExtractionEngine(
            ocr_adapter=OcrAdapter(ocr_client),
            ocr_for_all_pdfs=args.ocr_for_all_pdfs or None,
        )
        enricher = OllamaEnricher() if use_llm else None
        try:
            return await convert_claim_documents(
                claim.get("claimId"),
                claim.get("documents"),
                hospital_id=claim.get("hospitalId"),
                extraction_engine=engine,
                llm_fallback=enricher,
                document_concurrency=args.concurrency,
            )
        finally:
            if enricher is not None:
                await enricher.aclose()


def _cmd_convert(args) -> None:
    from claim_flow.errors import DocumentExtractionError, InputValidationError
    from claim_flow.logging import configure_logging

    configure_logging()
    claim = _load_claim(args.claim)

    console.print(f"[bold]Converting claim:[/bold] {claim.get('claimId')} ({args.claim})")
    try:
        output = asyncio.run(_run_convert(claim, args))
    except InputValidationError as exc:
        console.print("[red]Invalid claim request:[/red]")
        for violation in exc.violations:
            console.print(f"  • {violation}")
        sys.exit(2)
    except DocumentExtractionError as exc:
        console.print(f"[red]Extraction failed for {exc.file_name}:[/red] {exc.reason}")
        sys.exit(3)

    table = Table(title=f"Claim {output.metadata.claim_id} ({output.metadata.template_id} template)")
    table.add_column("#", style="dim")
    table.add_column("Document")
    table.add_column("HI type")
    table.add_column("Source")
    table.add_column("Quality", justify="right")
    table.add_column("LLM")
    table.add_column("Validation", style="bold")

    for i, r in enumerate(output.results, 1):
        color = "green" if r.validation.passed else "red"
        table.add_row(
            str(i),
            r.source_document.file_name,
            r.hi_type.value,
            r.extraction.source_mode,
            f"{r.quality.confidence_score:.0%}",
            "yes" if r.enriched else "",
            f"[{color}]{r.validation.status}[/{color}]",
        )

    console.print(table)
    console.print(
        f"\nBundles: {output.metadata.successful_count} passed, {output.metadata.failed_count} failed"
        f" | Compliance: {output.compliance_report.overall_status}"
    )
    for report in output.validation_report.bundle_reports:
        for issue in report.errors:
            console.print(f"  [yellow]bundle {report.bundle_index}[/yellow] {issue.code}: {issue.message}")

    if args.output:
        args.output.write_text(output.model_dump_json(indent=2))
        console.print(f"[green]JSON written to {args.output}[/green]")


def _cmd_health(args) -> None:
    from claim_flow.extraction import OcrBackendClient
    from claim_flow.logging import configure_logging

    configure_logging()

    async def check():
        async with OcrBackendClient() as client:
            return await client.check_health()

    health = asyncio.run(check())
    if not health.ok:
        console.print(f"[red]OCR backend unreachable at {health.base_url}:[/red] {health.error}")
        sys.exit(1)

    console.print(f"[green]OCR backend OK[/green] at {health.base_url}")
    console.print(f"Configured model: {health.model}")
    console.print(f"Effective model:  {health.effective_model}")
    if health.model_fallback:
        console.print("[yellow]Configured model not pulled; using a fallback model[/yellow]")
