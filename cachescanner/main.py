import argparse
import signal
import sys

from cachescanner.core.config import (
    AuthConfig, Configuration, generate_sample_config, load_configuration, validate_configuration,
)
from cachescanner.core.errors import ConfigError, ScanCancelled, ScanFailed
from cachescanner.core.models import Target
from cachescanner.core.orchestrator import Orchestrator
from cachescanner.reporters.console import Log
from cachescanner.reporters.json_report import write_json


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="cachescanner",
                                description="Web Cache Vulnerability Scanner")
    p.add_argument("target", nargs="?", help="Base URL (ej: https://example.com)")
    p.add_argument("-c", "--config", help="YAML configuration file")
    p.add_argument("-t", "--threads", type=int, help="Concurrent requests")
    p.add_argument("--timeout", type=float, help="Per-request timeout in seconds")
    p.add_argument("-H", "--header", action="append", default=[],
                   help="Extra header 'Name: value' (repeatable)")
    p.add_argument("-b", "--cookie", action="append", default=[],
                   help="Cookie 'name=value' (repeatable)")
    p.add_argument("--proxy", help="Proxy (ej: http://127.0.0.1:8080, socks5://...)")
    p.add_argument("--auth", help="Basic auth credentials user:pass")
    p.add_argument("--user-agent", help="User-Agent header")
    p.add_argument("--depth", type=int, help="Maximum crawl depth")
    p.add_argument("--rate-limit", type=float, help="Requests per second")
    p.add_argument("--passive", action="store_true",
                   help="Only run probes that inject nothing (timing, probing)")
    p.add_argument("-p", "--path", action="append", default=[],
                   help="Restrict the crawl to this path or glob (repeatable)")
    p.add_argument("-x", "--exclude", action="append", default=[],
                   help="Exclude this path or glob (repeatable)")
    p.add_argument("-w", "--wordlist", help="Path wordlist for discovery")
    p.add_argument("--probes", help="Comma separated probe names")
    p.add_argument("-k", "--insecure", action="store_true",
                   help="Do not verify TLS certificates")
    p.add_argument("--no-redirects", action="store_true", help="Do not follow redirects")
    p.add_argument("-o", "--output", help="Write a JSON report to this file")
    p.add_argument("-v", "--verbose", action="count", default=1, help="-v, -vv")
    p.add_argument("--validate-config", action="store_true",
                   help="Validate the configuration and exit")
    p.add_argument("--generate-config", metavar="PATH",
                   help="Write a sample configuration file and exit")
    return p


def apply_args(config: Configuration, args) -> Configuration:
    """Command-line flags override the file configuration."""
    if args.threads is not None:
        config.threads = args.threads
    if args.timeout is not None:
        config.timeout = args.timeout
    for raw in args.header:
        name, found, value = raw.partition(":")
        if not found:
            raise ConfigError("--header", f"expected 'Name: value', got {raw!r}")
        config.http.headers.append((name.strip(), value.strip()))
    for raw in args.cookie:
        name, found, value = raw.partition("=")
        if not found:
            raise ConfigError("--cookie", f"expected 'name=value', got {raw!r}")
        config.http.cookies.append((name.strip(), value.strip()))
    if args.proxy:
        config.http.proxy = args.proxy
    if args.auth:
        user, _, pwd = args.auth.partition(":")
        config.http.auth = AuthConfig(username=user, password=pwd)
    if args.user_agent:
        config.http.user_agent = args.user_agent
    if args.depth is not None:
        config.depth = args.depth
    if args.rate_limit is not None:
        config.rate_limit = args.rate_limit
    if args.passive:
        config.passive = True
    if args.path:
        config.paths = list(args.path)
    if args.exclude:
        config.exclude_paths = list(args.exclude)
    if args.wordlist:
        config.wordlists.paths = args.wordlist
    if args.probes:
        config.probes = [name.strip() for name in args.probes.split(",") if name.strip()]
    if args.insecure:
        config.verify_ssl = False
    if args.no_redirects:
        config.follow_redirects = False
    return config


def main(argv=None):
    p = build_parser()
    args = p.parse_args(argv)
    log = Log(verbose=args.verbose)

    if args.generate_config:
        generate_sample_config(args.generate_config)
        log.ok(f"Sample configuration written to {args.generate_config}")
        return 0

    try:
        config = load_configuration(args.config) if args.config else Configuration()
        config = apply_args(config, args)
    except (ConfigError, OSError) as exc:
        log.fail(f"Configuration error: {exc}")
        return 2

    errors = validate_configuration(config)
    for err in errors:
        log.fail(f"Configuration error: {err}")
    if errors:
        return 2
    if args.validate_config:
        log.ok("Configuration is valid")
        return 0
    if not args.target:
        p.error("the target URL is required")

    target = Target.from_configuration(args.target, config)
    orchestrator = Orchestrator(config, logger=log)
    signal.signal(signal.SIGINT, lambda *_: orchestrator.cancel())

    log.info(f"{orchestrator.name} {orchestrator.version} scanning {target.base_url}")
    try:
        result = orchestrator.run(target)
        code = 0
    except ScanCancelled as exc:
        result = exc.partial
        code = 130
        log.warn("Scan cancelled, reporting partial results")
    except ScanFailed as exc:
        log.fail(str(exc))
        return 1

    log.summary(result)
    if args.output:
        write_json(result, args.output)
        log.ok(f"JSON report written to {args.output}")
    return code


if __name__ == "__main__":
    sys.exit(main())
