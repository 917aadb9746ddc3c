import json


def to_json(result, indent: int = 2) -> str:
    """Serialise a ScanResult; key order is fixed so equal scans diff cleanly."""
    return json.dumps(result.to_dict(), indent=indent, ensure_ascii=False)


def write_json(result, path: str) -> None:
    with open(path, "w", encoding="utf-8") as f:
        f.write(to_json(result))
        f.write("\n")
