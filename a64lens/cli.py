#!/usr/bin/env python3
# -*- coding: utf-8 -*-

import argparse
import os
import sys

from a64lens.config import OPT_LEVELS, A64LensOptions
from a64lens.lib.errors import A64LensError
from a64lens.lib.runners import run_analyze_mode, run_compare_mode, run_list_mode
from a64lens.logger import LOG, apply_output_mode

A64LENS_LOGO = r"""
         __   _  _   _
  __ _  / /_ | || | | |  ___  _ __   ___
 / _` || '_ \| || |_| | / _ \| '_ \ / __|
| (_| || (_) |__   _| ||  __/| | | |\__ \
 \__,_| \___/   |_| |_| \___||_| |_||___/
"""


def build_args(argv=None):
    """
    Constructs command line arguments for the a64lens tool
    """
    parser = build_parser()
    return parser, parser.parse_args(argv)


def build_common_parser():
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "-o",
        "--reports",
        dest="reports_dir",
        default=os.path.join(os.getcwd(), "reports"),
        help="Reports directory. Defaults to reports.",
    )
    common.add_argument(
        "--json",
        action="store_true",
        default=False,
        dest="json_mode",
        help="Also export the parsed instructions and explanations as JSON.",
    )
    common.add_argument(
        "--stdout",
        action="store_true",
        default=False,
        dest="stdout_mode",
        help="Print the Markdown report to stdout instead of a file.",
    )
    common.add_argument(
        "--no-banner",
        action="store_true",
        default=False,
        dest="no_banner",
        help="Do not display banner.",
    )
    common.add_argument(
        "-q",
        "--quiet",
        action="store_true",
        default=False,
        dest="quiet_mode",
        help="Disable logging and progress bars.",
    )
    common.add_argument(
        "-l",
        "--label",
        dest="labels",
        action="extend",
        default=[],
        nargs="+",
        help="Labels of the dump files, in the same order. Defaults to the optimization "
             "level found in the file name, or the file name.",
    )
    return common


def build_parser():
    parser = argparse.ArgumentParser(
        prog="a64lens",
        description="Explain AArch64 objdump disassembly and compare it across optimization levels.",
    )
    parser.set_defaults(
        src_files=[],
        prefix=None,
        function_name=None,
        levels=[],
    )
    common = build_common_parser()
    subparsers = parser.add_subparsers(
        title="sub-commands",
        description="Additional sub-commands",
        dest="subcommand_name",
        required=True,
    )
    analyze_parser = subparsers.add_parser(
        "analyze", parents=[common], help="Explain every instruction of one or more dumps."
    )
    analyze_parser.add_argument(
        "-i",
        "--src",
        dest="src_files",
        action="extend",
        nargs="+",
        required=True,
        help="Dump files produced by objdump -d (optionally with -S, -l and -r).",
    )
    analyze_parser.add_argument(
        "-f",
        "--function",
        dest="function_name",
        help="Only report this function. Defaults to all functions.",
    )
    compare_parser = subparsers.add_parser(
        "compare",
        parents=[common],
        help="Compare functions across optimization levels.",
    )
    compare_parser.add_argument(
        "prefix",
        nargs="?",
        default=None,
        metavar="PREFIX",
        help="Dump prefix. spark_matrix looks for spark_matrix_O0.dump, spark_matrix_O1.dump "
             "and spark_matrix_O2.dump.",
    )
    compare_parser.add_argument(
        "-i",
        "--src",
        dest="src_files",
        action="extend",
        nargs="+",
        help="Dump files to compare, instead of a prefix.",
    )
    compare_parser.add_argument(
        "-f",
        "--function",
        dest="function_name",
        help="Function to compare. Defaults to every function present in all dumps.",
    )
    compare_parser.add_argument(
        "--levels",
        dest="levels",
        action="extend",
        nargs="+",
        help=f"Optimization levels looked up for a prefix. Defaults to {' '.join(OPT_LEVELS)}. "
             "The environment variable A64LENS_OPT_LEVELS is an alternative way to set this value.",
    )
    list_parser = subparsers.add_parser(
        "list", parents=[common], help="List the functions of one or more dumps."
    )
    list_parser.add_argument(
        "-i",
        "--src",
        dest="src_files",
        action="extend",
        nargs="+",
        required=True,
        help="Dump files.",
    )
    return parser


def handle_args(argv=None):
    """Handles the command-line arguments.

    This function parses the command-line arguments and returns an A64LensOptions object

    Returns:
        A64LensOptions: A class containing the parsed command-line arguments
    """
    parser, args = build_args(argv)
    if args.subcommand_name == "compare" and not args.prefix and not args.src_files:
        parser.error("compare needs a PREFIX or dump files given with -i")
    try:
        options = A64LensOptions(
            mode=args.subcommand_name,
            src_files=args.src_files or [],
            labels=args.labels,
            prefix=args.prefix,
            function_name=args.function_name,
            reports_dir=args.reports_dir,
            json_mode=args.json_mode,
            stdout_mode=args.stdout_mode,
            quiet_mode=args.quiet_mode,
            no_banner=args.no_banner,
            opt_levels=tuple(args.levels) if args.levels else OPT_LEVELS,
        )
    except ValueError as e:
        parser.error(str(e))
    if not options.no_banner and not options.stdout_mode and not options.quiet_mode:
        print(A64LENS_LOGO)
    return options


def main(argv=None):
    """Main function of the a64lens tool"""
    options = handle_args(argv)
    apply_output_mode(options.quiet_mode, options.stdout_mode)
    try:
        if options.mode == "compare":
            run_compare_mode(options)
        elif options.mode == "list":
            run_list_mode(options)
        else:
            run_analyze_mode(options)
    except A64LensError as e:
        LOG.error(e)
        sys.exit(1)
    except OSError as e:
        LOG.error(f"Unable to read or write {e.filename}: {e.strerror}")
        sys.exit(1)


if __name__ == "__main__":
    main()
