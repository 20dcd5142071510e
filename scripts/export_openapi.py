import json
import sys
from pathlib import Path


def main() -> int:
    repo_root = Path(__file__).resolve().parent.parent
    sys.path.insert(0, str(repo_root / "backend"))

    from workers_api.main import app  # noqa: E402

    output_file = repo_root / "docs" / "openapi.json"
    output_file.parent.mkdir(parents=True, exist_ok=True)
    schema = app.openapi()
    with output_file.open("w", encoding="utf-8") as f:
        json.dump(schema, f, ensure_ascii=False, indent=2, sort_keys=True)
        f.write("\n")

    print(f"OpenAPI exported: {output_file} ({len(schema.get('paths', {}))} paths)")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
