#!/usr/bin/env python3
"""
SiteSight Command Line Interface

Main CLI entry point for SiteSight construction photo analysis.
Provides commands for analyzing a photo folder, pairing before/after scenes,
ordering photos for the ledger and re-running consensus voting.
"""

import json
import sys
import click
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from sitesight.config import get_config_value, load_config
from sitesight.exceptions import SiteSightError
from sitesight.models import PhotoRecord
from sitesight.utils.logging import setup_console_logging, setup_file_logging

logger = logging.getLogger(__name__)

RESULTS_FILE_NAME = "analysis_results.json"


def load_results(results_file: Path) -> List[PhotoRecord]:
    """
    Read photo records from an analysis results file

    Payloads point at the photos next to the results file so that commands
    calling the vision service can send them again.
    """
    with open(results_file, 'r', encoding='utf-8') as f:
        data = json.load(f)

    entries = data.get('photos', []) if isinstance(data, dict) else data
    photo_dir = results_file.parent
    photos = []
    for entry in entries:
        photo_path = photo_dir / entry['fileName']
        photos.append(PhotoRecord.from_dict(entry, payload=photo_path if photo_path.exists() else None))
    return photos


def write_results(output_file: Path, data: Dict[str, Any]) -> None:
    with open(output_file, 'w', encoding='utf-8') as f:
        json.dump(data, f, ensure_ascii=False, indent=2)


def update_results(results_file: Path, output_file: Path, photos: List[PhotoRecord]) -> None:
    """Rewrite the photo records of a results file, keeping its other sections."""
    with open(results_file, 'r', encoding='utf-8') as f:
        data = json.load(f)
    if not isinstance(data, dict):
        data = {}
    data['photos'] = [photo.to_dict() for photo in photos]
    write_results(output_file, data)


@click.group()
@click.option('--config', '-c', type=click.Path(exists=True),
              help='Configuration file path')
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose logging')
@click.option('--quiet', '-q', is_flag=True, help='Suppress non-error output')
@click.pass_context
def main(ctx, config: Optional[str] = None, verbose: bool = False, quiet: bool = False):
    """
    SiteSight - Construction site photo ledger assistant

    Classifies site photos with a vision-language model, pairs before and
    after photos of the same location and resolves ambiguous measurement
    points by majority vote.
    """

    # Ensure context object exists
    if ctx.obj is None:
        ctx.obj = {}

    ctx.obj['config'] = load_config(config)

    # Configure logging level
    if verbose:
        level = 'DEBUG'
    elif quiet:
        level = 'ERROR'
    else:
        level = get_config_value(ctx.obj['config'], 'logging.level', 'INFO')
    setup_console_logging(level, fmt=get_config_value(
        ctx.obj['config'], 'logging.format', '%(asctime)s - %(name)s - %(levelname)s - %(message)s'))

    log_file = get_config_value(ctx.obj['config'], 'logging.file')
    if log_file:
        setup_file_logging(Path(log_file))

    # Store CLI options in context
    ctx.obj['verbose'] = verbose
    ctx.obj['quiet'] = quiet


@main.command()
@click.argument('folder', type=click.Path(exists=True, file_okay=False, dir_okay=True))
@click.option('--output', '-o', type=click.Path(dir_okay=False),
              help=f'Results file (default: FOLDER/{RESULTS_FILE_NAME})')
@click.option('--instruction', '-i', help='Instruction given priority in the analysis prompt')
@click.option('--batch-size', '-b', type=int, help='Photos per analysis request')
@click.option('--recursive/--no-recursive', default=False, help='Include sub-folders')
@click.option('--consensus/--no-consensus', default=True, help='Run consensus voting')
@click.pass_context
def analyze(ctx, folder: str, output: Optional[str] = None, instruction: Optional[str] = None,
            batch_size: Optional[int] = None, recursive: bool = False, consensus: bool = True):
    """
    Analyze all photos in a folder.

    Runs ledger classification, spatial feature extraction, scene pairing
    and consensus voting, then writes the results as JSON.

    FOLDER: Folder containing the site photos
    """

    from sitesight.io.filesystem import scan_folder
    from sitesight.pipeline import AnalysisPipeline

    config = ctx.obj.get('config', {})
    quiet = ctx.obj.get('quiet', False)

    if batch_size:
        config['pipeline']['batch_size'] = batch_size
    config['consensus']['enabled'] = consensus

    photos = scan_folder(folder, recursive=recursive)
    if not photos:
        click.echo("❌ No photos found in folder", err=True)
        sys.exit(1)

    if not quiet:
        click.echo(f"📸 Found {len(photos)} photos in {folder}")

    try:
        pipeline = AnalysisPipeline(config)
        report = pipeline.run(photos, instruction)
    except SiteSightError as e:
        click.echo(f"❌ Analysis failed: {e}", err=True)
        sys.exit(1)

    output_file = Path(output) if output else Path(folder) / RESULTS_FILE_NAME
    write_results(output_file, report.to_dict())

    if not quiet:
        pipeline.stats.print_summary()
        if report.pairing is not None:
            click.echo(pipeline.pairing_manager.get_pairing_summary(report.pairing))
        click.echo(f"💾 Results saved to: {output_file}")


@main.command()
@click.argument('results_file', type=click.Path(exists=True, dir_okay=False))
@click.option('--output', '-o', type=click.Path(dir_okay=False),
              help='Write the results with scene assignments to this file')
@click.pass_context
def pair(ctx, results_file: str, output: Optional[str] = None):
    """
    Select before/after pairs from an analysis results file.

    RESULTS_FILE: JSON written by the analyze command
    """

    from sitesight.analysis.similarity.manager import ScenePairingManager

    config = ctx.obj.get('config', {})
    photos = load_results(Path(results_file))
    analyzed = [photo for photo in photos if photo.analysis is not None]
    for photo in analyzed:
        photo.analysis.clear_scene()

    manager = ScenePairingManager(config)
    report = manager.pair_scenes(analyzed)

    for index, scene_pair in enumerate(report.pairs, 1):
        flag = " ⚠️" if scene_pair.low_confidence else ""
        click.echo(f"{index:3d}. [{scene_pair.cluster_key}] {scene_pair.before.file_name} -> "
                   f"{scene_pair.after.file_name} ({scene_pair.similarity * 100:.1f}%, "
                   f"rule {scene_pair.rule}){flag}")
    for entry in report.omitted:
        click.echo(f"  omitted ({entry.reason}): {', '.join(m.file_name for m in entry.members)}")
    click.echo(manager.get_pairing_summary(report))

    if output:
        update_results(Path(results_file), Path(output), photos)
        click.echo(f"💾 Results saved to: {output}")


@main.command()
@click.argument('results_file', type=click.Path(exists=True, dir_okay=False))
@click.option('--strict', is_flag=True, help='Keep only before/after pairs')
@click.pass_context
def sort(ctx, results_file: str, strict: bool = False):
    """
    Print the ledger order of the photos in a results file.

    RESULTS_FILE: JSON written by the analyze command
    """

    from sitesight.selection.sequencer import PhotoSequencer

    config = ctx.obj.get('config', {})
    photos = load_results(Path(results_file))
    sequencer = PhotoSequencer.from_config(config)

    if strict:
        sequence = sequencer.sort_strict_pairs(photos)
        for before, after in sequence.pairs:
            click.echo(f"{before.file_name}\t{after.file_name}")
        click.echo(f"Pairs: {sequence.pair_count}, omitted: {sequence.omitted_count}")
        for photo in sequence.omitted:
            click.echo(f"  omitted: {photo.file_name}")
    else:
        for index, photo in enumerate(sequencer.sort_loose(photos), 1):
            scene = photo.analysis.scene_id if photo.analysis else None
            click.echo(f"{index:3d}. {photo.file_name}" + (f" [{scene}]" if scene else ""))


@main.command()
@click.argument('results_file', type=click.Path(exists=True, dir_okay=False))
@click.option('--rounds', '-r', type=int, help='Number of independent judgments')
@click.option('--output', '-o', type=click.Path(dir_okay=False),
              help='Results file to write (default: overwrite RESULTS_FILE)')
@click.pass_context
def consensus(ctx, results_file: str, rounds: Optional[int] = None, output: Optional[str] = None):
    """
    Re-run consensus voting on an existing results file.

    The photos must sit next to the results file.

    RESULTS_FILE: JSON written by the analyze command
    """

    from sitesight.analysis.consensus import ConsensusVoter
    from sitesight.analysis.vision_llm_analyzer import VisionLLMAnalyzer

    config = ctx.obj.get('config', {})
    photos = load_results(Path(results_file))

    try:
        analyzer = VisionLLMAnalyzer(config)
        voter = ConsensusVoter(analyzer.orchestrator, config, analyzer.system_instruction)
        targets = [photo for photo in voter.select_targets(photos) if photo.payload is not None]
        outcomes = voter.reach_consensus(targets, rounds)
        updated = voter.apply_consensus(photos, outcomes)
        corrected = 0
        if outcomes and voter.config.get('verify_descriptions', True):
            corrected = voter.verify_descriptions(targets)
    except SiteSightError as e:
        click.echo(f"❌ Consensus failed: {e}", err=True)
        sys.exit(1)

    for name, outcome in outcomes.items():
        state = "unanimous" if outcome.unanimous else "majority" if outcome.changed else "kept"
        click.echo(f"  {name}: {outcome.value} {outcome.votes} ({state})")

    output_file = Path(output) if output else Path(results_file)
    update_results(Path(results_file), output_file, photos)
    if corrected:
        click.echo(f"  {corrected} descriptions corrected")
    click.echo(f"✅ Updated {updated} photos; results saved to: {output_file}")


@main.command()
def version():
    """Show SiteSight version information."""
    from sitesight import __version__
    click.echo(f"SiteSight v{__version__}")
    click.echo("Scene pairing and consensus pipeline for construction site photos")


if __name__ == '__main__':
    main()
