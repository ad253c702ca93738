"""
Entry point for python -m autopilot_memory

The MCP stdio transport hangs on Windows if stdout/stderr are block
buffered, so both are switched to write-through before the server starts.
"""
import os
import sys

if sys.platform == 'win32':
    for stream in (sys.stdout, sys.stderr):
        stream.reconfigure(line_buffering=True, write_through=True)
    os.environ['PYTHONUNBUFFERED'] = '1'

from autopilot_memory.server import main

if __name__ == '__main__':
    main()
