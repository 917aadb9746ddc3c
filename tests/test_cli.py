"""Command-line entry point."""

from cachescanner.core.config import Configuration, load_configuration
from cachescanner.main import apply_args, build_parser, main


def parse(*argv):
    return build_parser().parse_args(list(argv))


class TestApplyArgs:
    def test_flags_override_configuration(self):
        args = parse("http://app.test/", "-t", "3", "--timeout", "7.5",
                     "-H", "X-Team: red", "-b", "session=abc", "--auth", "alice:pw",
                     "--proxy", "socks5://127.0.0.1:9050", "--depth", "1",
                     "--rate-limit", "4", "--passive", "-p", "/shop", "-x", "/shop/cart*",
                     "--probes", "timing, probing", "-k", "--no-redirects")
        cfg = apply_args(Configuration(), args)
        assert (cfg.threads, cfg.timeout, cfg.depth, cfg.rate_limit) == (3, 7.5, 1, 4.0)
        assert cfg.http.headers == [("X-Team", "red")]
        assert cfg.http.cookies == [("session", "abc")]
        assert cfg.http.auth.username == "alice"
        assert cfg.http.proxy == "socks5://127.0.0.1:9050"
        assert cfg.passive
        assert cfg.paths == ["/shop"] and cfg.exclude_paths == ["/shop/cart*"]
        assert cfg.probes == ["timing", "probing"]
        assert not cfg.verify_ssl and not cfg.follow_redirects

    def test_untouched_flags_keep_file_values(self):
        cfg = Configuration(threads=9, depth=4)
        apply_args(cfg, parse("http://app.test/"))
        assert (cfg.threads, cfg.depth) == (9, 4)


class TestMain:
    def test_generate_then_validate(self, tmp_path, capsys):
        path = tmp_path / "scan.yaml"
        assert main(["--generate-config", str(path)]) == 0
        assert load_configuration(str(path)).threads == 10
        assert main(["-c", str(path), "--validate-config"]) == 0
        assert "valid" in capsys.readouterr().out

    def test_invalid_configuration_exit_code(self, capsys):
        assert main(["-t", "0", "--validate-config"]) == 2
        assert "threads" in capsys.readouterr().out

    def test_malformed_header_flag(self):
        assert main(["http://app.test/", "-H", "no-colon"]) == 2

    def test_unknown_probe(self, capsys):
        assert main(["--probes", "nope", "--validate-config"]) == 2
