#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# Copyright (c) 2023 John Markus Bjørndalen, jmb@cs.uit.no.
# See LICENSE.txt for licensing details (MIT License).
"""
Configuration and helpers.

The library itself only creates module level loggers. configure_logging()
and handle_common_args() are for programs (examples, benchmarks) built on it.
"""

import argparse
import logging
import os

log = logging.getLogger(__name__)

WORKERS_ENV = 'TCSP_WORKERS'
LOG_FORMAT = '%(asctime)s %(levelname)-7s %(threadName)s %(name)s: %(message)s'


def default_workers():
    """Default pool size: $TCSP_WORKERS if set to a positive int, else the
    number of CPUs."""
    val = os.environ.get(WORKERS_ENV)
    if val:
        try:
            n = int(val)
        except ValueError:
            n = 0
        if n > 0:
            return n
        log.warning("ignoring invalid %s=%r", WORKERS_ENV, val)
    return os.cpu_count() or 1


def configure_logging(level='WARNING'):
    """Set up stdlib logging for a program using tcsp."""
    if isinstance(level, str):
        level = level.upper()
    logging.basicConfig(level=level, format=LOG_FORMAT)


# Common arguments are added and handled here. The general outline for a program is to
# use handle_common_args() with a list of argument specs to add.

def make_argparser():
    argparser = argparse.ArgumentParser()
    argparser.add_argument("-w", "--workers", type=int, default=None,
                           help=f"worker threads in the pool (default: ${WORKERS_ENV} or cpu count)")
    argparser.add_argument("-l", "--log-level", default="WARNING", help="logging level")
    return argparser


def handle_common_args(argspecs=None, argv=None):
    """argspecs is a list of arguments for argparser.add_argument, with
    each item a tuple of (*args, **kwargs).
    Returns the parsed args, after configuring logging. args.workers is
    filled in with default_workers() when not given.

    NB: Using argparser with pytest does not work particularly well, pass argv explicitly there.
    """
    argparser = make_argparser()
    if argspecs is None:
        argspecs = []
    for spec in argspecs:
        argparser.add_argument(*spec[0], **spec[1])
    args = argparser.parse_args(argv)
    configure_logging(args.log_level)
    if args.workers is None:
        args.workers = default_workers()
    return args


def avg(vals):
    "Returns the average of values"
    return sum(vals) / len(vals)


async def aenumerate(aiterable, start=0):
    """Async version of enumerate that can be used in an async for"""
    async for val in aiterable:
        yield (start, val)
        start += 1
