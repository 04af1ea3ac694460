"""Write the qbank OpenAPI document to openapi.json at the project root.

Imports the FastAPI app directly; no server or database connection is needed
(the lifespan does not run).

Usage:
    python scripts/export_openapi.py [output_path]

The generated file is a build artifact for client generation; do not commit it.
"""

import json
import sys
from pathlib import Path

project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from qbank.server.main import app  # noqa: E402

output_path = Path(sys.argv[1]) if len(sys.argv) > 1 else project_root / "openapi.json"
document = app.openapi()
output_path.write_text(json.dumps(document, indent=2), encoding="utf-8")

print(f"OpenAPI document written to {output_path}")
for path, operations in sorted(document.get("paths", {}).items()):
    print(f"  {path}: {', '.join(sorted(m.upper() for m in operations))}")
