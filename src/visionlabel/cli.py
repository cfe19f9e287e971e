"""Command-line interface for VisionLabel."""

import json
import logging
from dataclasses import asdict
from pathlib import Path
from typing import Optional

import typer
from pydantic import ValidationError

from visionlabel.config import Settings
from visionlabel.main import configure_logging
from visionlabel.ml.errors import ClassifierError
from visionlabel.ml.image_classifier import ImageClassifier

app = typer.Typer(help="VisionLabel: ONNX image classification with target-label confidence")
logger = logging.getLogger(__name__)


def _settings(**overrides: object) -> Settings:
    try:
        return Settings(**{key: value for key, value in overrides.items() if value is not None})  # type: ignore[arg-type]
    except ValidationError as exc:
        typer.echo(f"Error: invalid option: {exc}", err=True)
        raise typer.Exit(1) from exc


@app.command()
def classify(
    image: Path = typer.Argument(..., help="Path to image file"),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Model path or hf://<owner>/<repo>/<file>"),
    labels: Optional[Path] = typer.Option(None, "--labels", "-l", help="Newline-delimited labels file"),
    target: Optional[str] = typer.Option(None, "--target", "-t", help="Label whose confidence to report"),
    device: Optional[str] = typer.Option(None, "--device", "-d", help="cpu, cuda or openvino"),
    json_out: bool = typer.Option(False, "--json", help="Print the result as JSON"),
) -> None:
    """Classify a single image once."""
    settings = _settings(
        model_asset=model,
        labels_path=str(labels) if labels is not None else None,
        target_label=target,
        device=device,
    )
    configure_logging(settings)

    if not image.exists():
        typer.echo(f"Error: image file {image} does not exist", err=True)
        raise typer.Exit(1)

    with ImageClassifier(settings) as classifier:
        try:
            classifier.initialize()
            result = classifier.classify(image)
        except ClassifierError as exc:
            logger.error("Classification failed: %s", exc, exc_info=True)
            raise typer.Exit(1) from exc

    if json_out:
        payload = asdict(result)
        payload.pop("probabilities")
        typer.echo(json.dumps(payload, indent=2))
        return

    typer.echo(f"{result.best_label} (index {result.best_index}): {result.best_probability:.2%}")
    if result.target_label is not None:
        if result.target_found:
            typer.echo(f"target '{result.target_label}': {result.target_probability:.2%}")
        else:
            typer.echo(f"target '{result.target_label}': not found in labels")


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address"),
    port: Optional[int] = typer.Option(None, "--port", help="Bind port"),
) -> None:
    """Run the HTTP API."""
    import uvicorn

    settings = _settings(host=host, port=port)
    uvicorn.run("visionlabel.main:app", host=settings.host, port=settings.port)


if __name__ == "__main__":
    app()
