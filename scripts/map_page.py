# Script that finds repeated address entries on a saved web page, geocodes them and writes map markers
from argparse import ArgumentParser
import logging
import sys

from tqdm import tqdm

from rec_mapper.geocoding import (
    DuckDBGeocodeCache,
    GeocodeOrchestrator,
    GeocodingConfig,
    NeedsDisambiguation,
    OrchestratorPhase,
    create_geocoder,
)
from rec_mapper.mapping import GeoDataFrameSink
from rec_mapper.matching import MatchOptions, MatchStatus
from rec_mapper.matching.text import extract_addresses
from rec_mapper.pipeline import ExtractionPipeline
from rec_mapper.settings import settings
from rec_mapper.utils.errors import DataValidationError, RecMapperError

from pathlib import Path


def ask(prompt: str) -> str:
    try:
        return input(prompt).strip()
    except EOFError:
        return ''


def resolve_disambiguation(orch: GeocodeOrchestrator) -> OrchestratorPhase:
    item = orch.state.current()
    tqdm.write(f'\n"{item.source_address}" matched several places:')
    for i, candidate in enumerate(orch.pending.candidates, start=1):
        tqdm.write(f'  {i}. {candidate.formatted_address} ({candidate.lat:.5f}, {candidate.lng:.5f})')

    while True:
        answer = ask(f'Choose 1-{len(orch.pending.candidates)}, or s to skip: ').lower()
        if answer in ('', 's', 'skip'):
            return orch.skip()
        if answer.isdigit() and 1 <= int(answer) <= len(orch.pending.candidates):
            return orch.choose(int(answer) - 1)
        tqdm.write('Not a valid choice.')


def resolve_not_found(orch: GeocodeOrchestrator) -> OrchestratorPhase:
    item = orch.state.current()
    tqdm.write(f'\n"{item.query_address}" was not found.')

    while True:
        answer = ask('Enter "lat, lng" or s to skip: ')
        if answer.lower() in ('', 's', 'skip'):
            return orch.skip()
        try:
            lat, lng = (float(part) for part in answer.replace(' ', ',').split(',') if part)
            return orch.provide_coordinates(lat, lng)
        except ValueError as e:
            tqdm.write(f'Could not use those coordinates: {e}')


def geocode(orch: GeocodeOrchestrator, records, area_hint: str, interactive: bool) -> None:
    with tqdm(total=len(records), desc='Geocoding', unit='addr') as bar:
        phase = orch.start(records, area_hint=area_hint)
        while phase != OrchestratorPhase.DONE:
            bar.n = orch.outcome_count()
            bar.refresh()
            if not interactive:
                phase = orch.skip()
            elif isinstance(orch.pending, NeedsDisambiguation):
                phase = resolve_disambiguation(orch)
            else:
                phase = resolve_not_found(orch)
        bar.n = orch.outcome_count()
        bar.refresh()


def main() -> int:
    parser = ArgumentParser(description='Extract addresses from a page by example, geocode them and write markers.')
    parser.add_argument('html', type=Path, help='Saved HTML page')
    parser.add_argument('--sample', '-s', nargs='+', required=True, help='CSS selectors of two or more example entries')
    parser.add_argument('--exclude', '-x', nargs='+', default=[], help='CSS selectors of matches to exclude before geocoding')
    parser.add_argument('--area-hint', '-a', type=str, default='')
    parser.add_argument('--provider', '-p', choices=['osm', 'google'], default=settings.provider)
    parser.add_argument('--api-key', '-k', type=str, default=None)
    parser.add_argument('--min-similarity', type=float, default=settings.min_similarity)
    parser.add_argument('--no-cache', action='store_true')
    parser.add_argument('--non-interactive', '-n', action='store_true', help='Skip ambiguous and unknown addresses')
    parser.add_argument('--outdir', '-o', type=Path, default=settings.export_path)
    parser.add_argument('--verbose', '-v', action='store_true')
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )

    pipeline = ExtractionPipeline(
        args.html,
        args.sample,
        options=MatchOptions.from_settings(min_similarity=args.min_similarity),
    )
    try:
        extraction = pipeline.run()
    except (RecMapperError, ValueError, OSError) as e:
        print(f'Extraction failed: {e}')
        return 1

    session = extraction.session
    if args.exclude:
        for selector in args.exclude:
            for key in extraction.page.select(selector):
                if session.state.statuses.get(key) == MatchStatus.MATCHED:
                    session.exclude(key)
        session.refine()
        extraction.addresses = extract_addresses(extraction.page, session.state.active_keys())

    selector = session.state.selector.query if session.state.selector else None
    print(f'Found {len(extraction.addresses)} addresses (selector: {selector}, confidence: {session.state.confidence.value})')
    if not extraction.addresses:
        return 1

    overrides = {'provider': args.provider}
    if args.api_key:
        overrides['api_key'] = args.api_key
    config = GeocodingConfig.from_env(**overrides)

    cache = None if args.no_cache else DuckDBGeocodeCache(config.cache_path)
    try:
        orch = GeocodeOrchestrator(create_geocoder(config), cache, max_candidates=config.max_candidates)
        geocode(orch, extraction.addresses, args.area_hint, interactive=not args.non_interactive)
    except DataValidationError as e:
        print(f'{e}\n{e.summary()}')
        return 1
    finally:
        if cache is not None:
            cache.close()

    sink = GeoDataFrameSink()
    sink.add_markers(orch.markers())
    if len(sink):
        out_path = sink.to_geojson(args.outdir / f'{args.html.stem}_markers.geojson')
        print(f'Wrote {len(sink)} markers to {out_path} (bounds: {sink.fit_bounds()})')

    summary = orch.error_summary()
    if summary:
        print(summary)
    return 0


if __name__ == '__main__':
    sys.exit(main())
