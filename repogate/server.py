"""Provide the server."""

import argparse
import logging
import os
import sys
from contextlib import asynccontextmanager
from os import environ as env
from typing import Optional

from dotenv import find_dotenv, load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from repogate import __version__
from repogate.git.client import DEFAULT_TIMEOUT, ObjectStoreClient
from repogate.git.commit import DEFAULT_BLOB_CONCURRENCY
from repogate.git.github import GITHUB_API_URL, GitHubObjectStore
from repogate.git.memory import MemoryGitStore
from repogate.http import create_gateway_router, register_error_handlers

LOGLEVEL = os.environ.get("REPOGATE_LOGLEVEL", "WARNING").upper()
logging.basicConfig(level=LOGLEVEL, stream=sys.stdout)
logger = logging.getLogger("server")
logger.setLevel(LOGLEVEL)

ENV_FILE = find_dotenv()
if ENV_FILE:
    load_dotenv(ENV_FILE)

ALLOW_HEADERS = [
    "Content-Type",
    "Authorization",
    "X-API-Key",
    "Api-Key",
    "Apikey",
    "Origin",
    "Accept",
]


def create_store(args):
    """Create the object store backend selected by ``--store``."""
    if args.store == "memory":
        logger.warning(
            "Using the in-memory object store, all data will be lost on restart!"
        )
        return MemoryGitStore(auto_init=True)
    return GitHubObjectStore(
        args.github_token,
        api_url=args.github_api_url,
        timeout=args.request_timeout,
    )


def create_application(args, client: Optional[ObjectStoreClient] = None):
    """Create a repogate application.

    Args:
        args: Parsed arguments from ``get_argparser``.
        client: Use this object store client instead of building one from
            ``args``; it is not closed on shutdown.
    """
    if args.from_env:
        logger.info("Loading arguments from environment variables")
        _args = get_args_from_env()
        # copy the _args to args
        for key, value in _args.__dict__.items():
            setattr(args, key, value)

    if args.store == "github" and not args.github_token:
        logger.error("Missing GH_TOKEN")
    if not args.api_key:
        logger.error("Missing ACTIONS_API_KEY")

    owns_client = client is None
    if owns_client:
        client = ObjectStoreClient(create_store(args), timeout=args.request_timeout)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        if owns_client:
            logger.info("Closing object store client")
            await client.close()

    application = FastAPI(
        title="repogate",
        lifespan=lifespan,
        description="An authenticated gateway for committing files to git branches",
        version=__version__,
    )
    application.add_middleware(
        CORSMiddleware,
        allow_origins=args.allow_origins.split(","),
        allow_methods=["*"],
        allow_headers=ALLOW_HEADERS,
    )
    register_error_handlers(application)
    application.include_router(
        create_gateway_router(
            client, args.api_key, blob_concurrency=args.blob_concurrency
        )
    )

    if args.host in ("127.0.0.1", "localhost"):
        logger.info(
            "***Note: If you want to enable access from another host, "
            "please start with `--host=0.0.0.0`.***"
        )
    return application


def get_args_from_env():
    """Read the arguments from ``REPOGATE_<ARG_NAME>`` environment variables."""
    parser = get_argparser(add_help=False)
    args = parser.parse_args([])

    arg_types = {
        action.dest: action.type
        for action in parser._actions
        if action.type is not None
    }
    arg_bools = {
        action.dest
        for action in parser._actions
        if isinstance(action, argparse._StoreTrueAction)
    }

    for arg_name in vars(args):
        env_var = "REPOGATE_" + arg_name.upper().replace("-", "_")
        if env_var in env:
            value = env[env_var]

            if arg_name in arg_bools:
                value = value.lower() in ("true", "1", "yes", "y", "on")
            elif arg_name in arg_types:
                try:
                    value = arg_types[arg_name](value)
                except (ValueError, TypeError) as e:
                    logger.warning(
                        f"Failed to convert environment variable {env_var}={value} "
                        f"to type {arg_types[arg_name]}: {str(e)}"
                    )
                    continue

            setattr(args, arg_name, value)

    return args


def get_argparser(add_help=True):
    """Return the argument parser."""
    parser = argparse.ArgumentParser(add_help=add_help)
    parser.add_argument(
        "--from-env",
        action="store_true",
        help="load arguments from environment variables, the environment variables should be in the format of REPOGATE_<ARG_NAME_UPPER>",
    )
    parser.add_argument(
        "--host",
        type=str,
        default="127.0.0.1",
        help="host for the repogate server",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=int(env.get("PORT", 3000)),
        help="port for the repogate server",
    )
    parser.add_argument(
        "--allow-origins",
        type=str,
        default="*",
        help="comma separated origins allowed by CORS",
    )
    parser.add_argument(
        "--api-key",
        type=str,
        default=env.get("ACTIONS_API_KEY"),
        help="shared secret callers must send as x-api-key or a bearer token",
    )
    parser.add_argument(
        "--github-token",
        type=str,
        default=env.get("GH_TOKEN"),
        help="token used to call the GitHub API",
    )
    parser.add_argument(
        "--github-api-url",
        type=str,
        default=GITHUB_API_URL,
        help="base URL of the GitHub REST API",
    )
    parser.add_argument(
        "--store",
        type=str,
        choices=["github", "memory"],
        default="github",
        help="object store backend, `memory` keeps repositories in process",
    )
    parser.add_argument(
        "--request-timeout",
        type=float,
        default=DEFAULT_TIMEOUT,
        help="seconds allowed for each call to the object store",
    )
    parser.add_argument(
        "--blob-concurrency",
        type=int,
        default=DEFAULT_BLOB_CONCURRENCY,
        help="maximum number of blobs written in parallel for one commit",
    )
    return parser
