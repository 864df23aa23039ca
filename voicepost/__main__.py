"""``python -m voicepost`` and the ``voicepost`` console script."""

import sys

from voicepost.cli import app
from voicepost.cli.utils import console
from voicepost.core.errors import PipelineError


def main() -> None:
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[warning]Cancelled, nothing was posted[/warning]")
        sys.exit(0)
    except PipelineError as e:
        console.print(f"[error]{e.kind}: {e.message}[/error]")
        sys.exit(1)
    except Exception as e:
        console.print(f"[error]Error: {e}[/error]")
        sys.exit(1)


if __name__ == "__main__":
    main()
