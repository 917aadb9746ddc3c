import threading
from colorama import init as colorama_init, Fore, Style
from datetime import datetime
colorama_init(autoreset=True)

_SEV_COLORS = {"Critical": Fore.RED, "High": Fore.RED, "Medium": Fore.YELLOW,
               "Low": Fore.GREEN}
_CONF_COLORS = {"Confirmed": Fore.RED, "Likely": Fore.YELLOW,
                "Informational": Fore.WHITE}


class Log:
    def __init__(self, verbose: int = 1):
        self.verbose = verbose
        self.PAY = Fore.MAGENTA
        self._lock = threading.Lock()

    def _time(self):
        return datetime.now().strftime("[%H:%M:%S]")

    def _fmt(self, level: str, color: str):
        return f"{self._time()} {color}[{level}]{Style.RESET_ALL}"

    def _print(self, line: str):
        # workers log from several threads at once
        with self._lock:
            print(line, flush=True)

    def info(self, msg: str):
        if self.verbose >= 1:
            self._print(f"{self._fmt('INFO', Fore.CYAN)} {msg}")

    def warn(self, msg: str):
        if self.verbose >= 0:
            self._print(f"{self._fmt('WARNING', Fore.YELLOW)} {msg}")

    def ok(self, msg: str):
        self._print(f"{self._fmt('SUCCESS', Fore.GREEN)} {msg}")

    def fail(self, msg: str):
        self._print(f"{self._fmt('FAIL', Fore.RED)} {msg}")

    def debug(self, msg: str):
        if self.verbose >= 2:
            self._print(f"{self._fmt('DEBUG', Fore.MAGENTA)} {msg}")

    def finding(self, finding):
        rating = finding.severity.rating
        sev_col = _SEV_COLORS.get(rating, Fore.WHITE)
        conf_col = _CONF_COLORS.get(finding.confidence.value, Fore.WHITE)
        lines = [
            f"{self._fmt(rating.upper(), sev_col)} {finding.kind.value} "
            f"{conf_col}[{finding.confidence.value}]{Style.RESET_ALL} "
            f"{Style.DIM}(CVSS {finding.severity.score}){Style.RESET_ALL}",
            f"    url: {finding.url}",
            f"    poc: {self.PAY}{finding.proof_of_concept}{Style.RESET_ALL}",
        ]
        if self.verbose >= 2:
            lines.append(f"    {finding.description}")
            lines.append(f"    fix: {finding.remediation}")
        self._print("\n".join(lines))

    def summary(self, result):
        counts = {}
        for f in result.findings:
            counts[f.confidence.value] = counts.get(f.confidence.value, 0) + 1
        breakdown = ", ".join(f"{n} {c}" for c, n in sorted(counts.items())) or "none"
        self._print(f"{self._fmt('SUMMARY', Fore.CYAN)} {result.target.base_url}: "
                    f"{len(result.candidates)} URLs, {result.requests_sent} requests, "
                    f"{len(result.findings)} findings ({breakdown}) "
                    f"in {result.duration:.1f}s")
        for failure in result.failures:
            self.warn(f"{failure.probe} could not run on {failure.url}: {failure.reason}")
        if not result.findings:
            self.fail("No cache vulnerabilities found")
