"""
Offline tide and current predictions from the command line.

Lists known stations, or prints the events (highs/lows, floods/ebbs and
slack water) or the raw predicted series of one station for a window.
"""
from __future__ import annotations

import argparse
import logging.config
import os
import sys
from pathlib import Path

import pandas as pd

from caltides.harmonics import config
from caltides.harmonics.engine import HarmonicsEngine
from caltides.harmonics.exceptions import MissingSourceDataError


def _setup_logger(logger):
    """Initialize logger if not provided."""
    if logger is not None:
        return logger

    config_file = config.get_config_file()
    log_config_file = (Path(__file__).parent.parent / 'conf/logging.conf').resolve()

    for file in [log_config_file, config_file]:
        if not os.path.isfile(file):
            print(f"Missing configuration file {file}", file=sys.stderr)
            sys.exit(-1)

    logging.config.fileConfig(log_config_file)
    logger = logging.getLogger('root')
    logger.info('Using config %s', config_file)
    logger.info('Using log config %s', log_config_file)
    return logger


def list_stations(engine, kind, out=sys.stdout):
    """Print one tab-separated line per station."""
    for station in engine.stations(kind):
        print(
            f"{station.key}\t{station.kind}\t{station.provider}\t"
            f"{station.lat:.4f}\t{station.lon:.4f}\t{station.name}",
            file=out,
        )


def print_station(engine, station_id, start, end, mode, optimized, step_seconds,
                  nodal_hour=None, meridian_override=None, meridian_from_timezone=False,
                  out=sys.stdout):
    """Print events or the raw series of one station in its local timezone."""
    station = engine.find_station(station_id)
    if station is None:
        print(f"Unknown station {station_id}", file=sys.stderr)
        return 1

    options = dict(
        step_seconds=step_seconds,
        nodal_hour=nodal_hour,
        meridian_override=meridian_override,
        meridian_from_timezone=meridian_from_timezone,
    )
    if mode == 'series':
        frame = engine.generate_predictions(station_id, start, end, **options)
    else:
        frame = engine.generate_events(station_id, start, end, optimized=optimized, **options)

    print(f"# {station.name} ({station.key}) {station.timezone}", file=out)
    if frame.empty:
        print('# no predictions', file=out)
        return 0

    local = pd.DatetimeIndex(frame['time']).tz_convert(station.timezone)
    for when, (_, row) in zip(local, frame.iterrows()):
        label = row['type'] if 'type' in frame.columns else ''
        print(f"{when:%Y-%m-%d %H:%M %Z}\t{label}\t{row['value']:.3f} {row['units']}", file=out)
    return 0


def main(argv=None, logger=None):
    parser = argparse.ArgumentParser(
        prog='python predict_station.py',
        description='Predict tides and currents from harmonic constants',
    )
    parser.add_argument('-c', '--Config', required=False, help='Path to harmonics.conf')
    parser.add_argument('-l', '--List', required=False, choices=['all', 'tide', 'current'],
                        help='List stations of the given kind')
    parser.add_argument('-i', '--Station', required=False, help='Station id, bin id or alias')
    parser.add_argument('-s', '--StartDate', required=False,
                        help='Start YYYY-MM-DDThh:mm:ss[Z|+hh:mm]; naive values are read as UTC')
    parser.add_argument('-e', '--EndDate', required=False,
                        help='End, same format and UTC default as --StartDate (default start + 24h)')
    parser.add_argument('-m', '--Mode', required=False, default='events', choices=['events', 'series'],
                        help='Print events or the raw series')
    parser.add_argument('-t', '--Step', required=False, type=float, help='Series step in seconds')
    parser.add_argument('--BruteForce', action='store_true', help='Disable the coarse-to-fine search')
    parser.add_argument('--NodalHour', required=False, type=int,
                        help='UTC hour of day at which nodal factors are evaluated')
    parser.add_argument('--Meridian', required=False, type=float,
                        help='Meridian override in hours west of Greenwich (e.g. 8 for PST)')
    parser.add_argument('--MeridianFromTimezone', action='store_true',
                        help="Use the station timezone's offset at the start date as meridian")

    args = parser.parse_args(argv)
    logger = _setup_logger(logger)

    try:
        engine = HarmonicsEngine(config.load_settings(args.Config, logger), logger)
    except MissingSourceDataError as ex:
        logger.error('%s', ex)
        return -1

    if args.List:
        list_stations(engine, None if args.List == 'all' else args.List)
        return 0

    if not args.Station or not args.StartDate:
        parser.error('--Station and --StartDate are required unless --List is given')

    start = pd.Timestamp(args.StartDate)
    end = pd.Timestamp(args.EndDate) if args.EndDate else start + pd.Timedelta(hours=24)
    return print_station(
        engine, args.Station, start, end, args.Mode, not args.BruteForce, args.Step,
        nodal_hour=args.NodalHour,
        meridian_override=args.Meridian,
        meridian_from_timezone=args.MeridianFromTimezone,
    )


if __name__ == '__main__':
    sys.exit(main())
