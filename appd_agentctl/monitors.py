#!/usr/bin/env python3
"""
AppDynamics Agent Control - Custom Metric Probes
Single-pass health checks that print Machine Agent custom metric lines:

    name=Custom Metrics|<path>,value=<int>

Probes:
- process        running processes from a watch list (pgrep -f matching)
- service        active systemd units
- postfix-queue  number of messages in the postfix queue
- url            HTTP endpoints answering below 400

Diagnostics go to stderr so stdout carries only metric output.
"""

import argparse
import csv
import io
import json
import re
import sys
import time
from dataclasses import asdict, dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Sequence

import psutil
import requests

from .errors import AgentCtlError
from .logger import configure_logging, get_logger
from .runner import CommandRunner

logger = get_logger('monitors')

PROCESS_PREFIX = 'Custom Metrics|ProcessMon'
SERVICE_PREFIX = 'Custom Metrics|CheckServicesMonitor'
POSTFIX_METRIC = 'Custom Metrics|Postfix|EmailQueueDepth'
URL_PREFIX = 'Custom Metrics|UrlMonitor'

DEFAULT_PROCESSES = [
    'CSFalconService', 'falcon-sensor', 'BESClient', 'QualysAgent',
    'splunkd', 'logger', 'FillDB', 'GatherDB', 'BESRootServer',
    'BESWebReportsServer', 'BESPluginService', 'BESWebUI', 'BESRelay',
    'BESPluginPortal', 'certsrv', 'K2HostServer', 'SourceCode.Configuration.Api',
    'K2ServerEvent', 'Nanobot', 'apache2.conf', 'java', 'Services.msc',
    'BrokerAgent', 'BrokerService', 'CdfSvc', 'httpd', 'apache2',
    'nginx', 'mysqld', 'postgres', 'redis-server', 'mongod',
    'docker', 'dockerd', 'containerd', 'kubelet', 'kube-proxy',
    'asm_pmon_+ASM', 'ora_pmon_cdb12201', 'ora_pmon_cdb19300', 'tnslsnr',
]

DEFAULT_SERVICES = [
    'appdynamics-machine-agent', 'splunk', 'besclient', 'falcon-sensor',
    'puppet', 'sophos-spl', 'puppetserver', 'sendmail', 'hdp',
]

OUTPUT_FORMATS = ('AppDynamics', 'JSON', 'CSV', 'Console')

JSON_KEYS = {
    'name': 'Name',
    'pid': 'Id',
    'status': 'Status',
    'cpu': 'CPU',
    'working_set_mb': 'WorkingSet',
    'virtual_memory_mb': 'VirtualMemory',
}

_QUEUE_ID = re.compile(r'^[A-F0-9]')


def format_metric(path: str, value) -> str:
    """One custom metric line."""
    return f"name={path},value={int(round(value))}"


# ----------------------------------------------------------------------
# Process probe
# ----------------------------------------------------------------------

@dataclass
class ProcessConfig:
    process_names: List[str]
    metric_prefix: str = PROCESS_PREFIX
    timeout_seconds: int = 30


@dataclass
class ProcessHit:
    name: str
    pid: int
    status: str = 'Running'
    cpu: Optional[float] = None
    working_set_mb: Optional[int] = None
    virtual_memory_mb: Optional[int] = None


def load_process_config(path: Optional[Path]) -> ProcessConfig:
    """Read ProcessNames / MetricPrefix / TimeoutSeconds; defaults on any problem."""
    config = ProcessConfig(list(DEFAULT_PROCESSES))
    if path is None or not Path(path).is_file():
        logger.info("Using default configuration")
        return config

    logger.info(f"Loading configuration from: {path}")
    try:
        with open(path, 'r') as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        logger.warning(f"Invalid JSON configuration file ({e}). Using defaults.")
        return config
    if not isinstance(data, dict):
        logger.warning("Configuration file is not a JSON object. Using defaults.")
        return config

    names = data.get('ProcessNames')
    if isinstance(names, list) and names:
        config.process_names = [str(n) for n in names]
    else:
        logger.warning("Could not load ProcessNames from config. Using defaults.")
    if data.get('MetricPrefix'):
        config.metric_prefix = str(data['MetricPrefix'])
    if data.get('TimeoutSeconds'):
        try:
            config.timeout_seconds = int(data['TimeoutSeconds'])
        except (TypeError, ValueError):
            logger.warning(f"Invalid TimeoutSeconds {data['TimeoutSeconds']!r}. Using default.")

    logger.info(f"Configuration loaded. Monitoring {len(config.process_names)} processes")
    return config


def _matcher(pattern: str) -> Callable[[str], bool]:
    try:
        regex = re.compile(pattern)
    except re.error:
        return lambda text: pattern in text
    return lambda text: regex.search(text) is not None


def _process_details(proc, hit: ProcessHit):
    """Lifetime CPU% and memory, like ps pcpu/rss/vsz."""
    try:
        with proc.oneshot():
            times = proc.cpu_times()
            elapsed = max(time.time() - proc.create_time(), 1e-6)
            mem = proc.memory_info()
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        return
    hit.cpu = round((times.user + times.system) / elapsed * 100, 1)
    hit.working_set_mb = mem.rss // (1024 * 1024)
    hit.virtual_memory_mb = mem.vms // (1024 * 1024)


def find_processes(names: Sequence[str], details: bool = False,
                   process_iter: Callable[..., Iterable] = psutil.process_iter,
                   timeout: Optional[float] = None) -> List[ProcessHit]:
    """Every (watch-list entry, pid) pair whose command line matches.

    With a timeout the scan stops early and reports what it found so far.
    """
    deadline = time.monotonic() + timeout if timeout else None
    own_pid = psutil.Process().pid
    table = []
    for proc in process_iter(['pid', 'name', 'cmdline']):
        if proc.info['pid'] == own_pid:
            continue
        cmdline = ' '.join(proc.info.get('cmdline') or []) or (proc.info.get('name') or '')
        table.append((proc, cmdline))

    logger.info("Starting process scan...")
    hits = []
    for name in names:
        if deadline is not None and time.monotonic() > deadline:
            logger.warning(f"Process scan timed out after {timeout}s")
            break
        matches = _matcher(name)
        found = [proc for proc, cmdline in table if matches(cmdline)]
        if not found:
            logger.debug(f"Not running: {name}")
        for proc in found:
            hit = ProcessHit(name=name, pid=proc.info['pid'])
            if details:
                _process_details(proc, hit)
            logger.debug(f"Found: {name} (PID: {hit.pid})")
            hits.append(hit)
    logger.info(f"Process scan completed. Found {len(hits)} running processes")
    return hits


def render_appdynamics(hits: List[ProcessHit], prefix: str) -> List[str]:
    lines = []
    for hit in hits:
        lines.append(format_metric(f"{prefix}|{hit.name}", 1))
        if hit.cpu:
            lines.append(format_metric(f"{prefix}|{hit.name}|CPU", hit.cpu))
        if hit.working_set_mb:
            lines.append(format_metric(f"{prefix}|{hit.name}|Memory", hit.working_set_mb))
    return lines


def render_json(hits: List[ProcessHit], monitored: int) -> str:
    payload = {
        'Timestamp': datetime.now().strftime('%Y-%m-%d %H:%M:%S'),
        'Processes': [
            {JSON_KEYS[k]: v for k, v in asdict(hit).items() if v is not None}
            for hit in hits
        ],
        'Summary': {'Total': len(hits), 'MonitoredProcesses': monitored},
    }
    return json.dumps(payload, indent=4)


def render_csv(hits: List[ProcessHit], details: bool) -> str:
    if not hits:
        return ''
    out = io.StringIO()
    writer = csv.writer(out, lineterminator='\n')
    if details:
        writer.writerow(['Name', 'Id', 'CPU', 'WorkingSet', 'VirtualMemory', 'Status'])
        for hit in hits:
            writer.writerow([hit.name, hit.pid, hit.cpu or 0, hit.working_set_mb or 0,
                             hit.virtual_memory_mb or 0, hit.status])
    else:
        writer.writerow(['Name', 'Id', 'Status'])
        for hit in hits:
            writer.writerow([hit.name, hit.pid, hit.status])
    return out.getvalue().rstrip('\n')


def render_console(hits: List[ProcessHit], monitored: int, details: bool) -> str:
    lines = [
        '',
        '=== Process Monitor Results ===',
        f"Timestamp: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
        f"Processes Found: {len(hits)} / {monitored} monitored",
        '',
    ]
    if not hits:
        lines.append('No monitored processes found')
        return '\n'.join(lines)

    if details:
        row = "{:<20} {:<8} {:<8} {:<12} {:<12} {:<10}"
        lines.append(row.format('Name', 'PID', 'CPU%', 'Memory(MB)', 'Virtual(MB)', 'Status'))
        lines.append(row.format('----', '---', '----', '---------', '----------', '------'))
        for hit in hits:
            lines.append(row.format(hit.name[:19], hit.pid, hit.cpu or 0,
                                    hit.working_set_mb or 0, hit.virtual_memory_mb or 0,
                                    hit.status))
    else:
        row = "{:<20} {:<8} {:<10}"
        lines.append(row.format('Name', 'PID', 'Status'))
        lines.append(row.format('----', '---', '------'))
        for hit in hits:
            lines.append(row.format(hit.name[:19], hit.pid, hit.status))
    return '\n'.join(lines)


def process_probe(config: ProcessConfig, output_format: str = 'AppDynamics',
                  details: bool = False,
                  process_iter: Callable[..., Iterable] = psutil.process_iter) -> str:
    hits = find_processes(config.process_names, details, process_iter,
                          config.timeout_seconds)
    monitored = len(config.process_names)
    if output_format == 'JSON':
        return render_json(hits, monitored)
    if output_format == 'CSV':
        return render_csv(hits, details)
    if output_format == 'Console':
        return render_console(hits, monitored, details)
    return '\n'.join(render_appdynamics(hits, config.metric_prefix))


# ----------------------------------------------------------------------
# Service, postfix and URL probes
# ----------------------------------------------------------------------

def service_probe(units: Sequence[str], runner: CommandRunner) -> List[str]:
    """One line per active unit; inactive units print nothing."""
    lines = []
    for unit in units:
        result = runner.run(['systemctl', 'is-active', '--quiet', unit], check=False)
        if result.ok:
            lines.append(format_metric(f"{SERVICE_PREFIX}|{unit}", 1))
        else:
            logger.debug(f"{unit} is not active")
    return lines


def count_queue_entries(postqueue_output: str) -> int:
    return sum(1 for line in postqueue_output.splitlines() if _QUEUE_ID.match(line))


def postfix_queue_probe(runner: CommandRunner) -> List[str]:
    result = runner.run(['postqueue', '-p'], check=False)
    return [format_metric(POSTFIX_METRIC, count_queue_entries(result.stdout))]


def url_probe(targets: Dict[str, str], timeout: float = 10,
              session: Optional[requests.Session] = None) -> List[str]:
    """GET each URL; value 1 when it answers below HTTP 400."""
    http = session or requests.Session()
    lines = []
    for name, url in targets.items():
        try:
            response = http.get(url, timeout=timeout, verify=False)
        except requests.RequestException as e:
            logger.warning(f"{name}: {url} unreachable ({e})")
            continue
        if response.status_code < 400:
            lines.append(format_metric(f"{URL_PREFIX}|{name}", 1))
        else:
            logger.warning(f"{name}: {url} returned HTTP {response.status_code}")
    return lines


# ----------------------------------------------------------------------
# CLI
# ----------------------------------------------------------------------

def _url_target(text: str):
    name, sep, url = text.partition('=')
    if not sep or not name or not url:
        raise argparse.ArgumentTypeError(f"expected NAME=URL, got {text!r}")
    return name, url


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='appd-metrics',
        description='AppDynamics Machine Agent custom metric probes',
    )
    parser.add_argument('-l', '--log', help='Also write diagnostics to this file')
    parser.add_argument('-q', '--quiet', action='store_true',
                        help='Only errors on stderr')
    sub = parser.add_subparsers(dest='probe')

    proc = sub.add_parser('process', help='Running processes from a watch list')
    proc.add_argument('-c', '--config', help='JSON file with ProcessNames/MetricPrefix')
    proc.add_argument('-f', '--format', choices=OUTPUT_FORMATS, default='AppDynamics')
    proc.add_argument('-d', '--details', action='store_true',
                      help='Include CPU and memory metrics')

    svc = sub.add_parser('service', help='Active systemd units')
    svc.add_argument('units', nargs='*', help='Units to check (default: built-in list)')

    sub.add_parser('postfix-queue', help='Postfix queue depth')

    url = sub.add_parser('url', help='HTTP endpoint availability')
    url.add_argument('--url', dest='targets', action='append', type=_url_target,
                     default=[], metavar='NAME=URL', help='Endpoint to check (repeatable)')
    url.add_argument('--timeout', type=float, default=10)
    return parser


def main(argv: List[str] = None, runner: CommandRunner = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.probe:
        parser.print_help()
        return 1

    configure_logging(args.log, 'ERROR' if args.quiet else 'INFO', console=sys.stderr)
    runner = runner or CommandRunner(timeout=30)

    if args.probe == 'process':
        config = load_process_config(Path(args.config) if args.config else None)
        output = process_probe(config, args.format, args.details)
        if output:
            print(output)
        return 0

    try:
        if args.probe == 'service':
            lines = service_probe(args.units or DEFAULT_SERVICES, runner)
        elif args.probe == 'postfix-queue':
            lines = postfix_queue_probe(runner)
        else:
            lines = url_probe(dict(args.targets), timeout=args.timeout)
    except AgentCtlError as e:
        logger.error(str(e))
        return 1

    for line in lines:
        print(line)
    return 0


if __name__ == '__main__':
    sys.exit(main())
