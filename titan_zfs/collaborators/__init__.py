"""
Output parsing for the command line tools this project drives.

Each module owns the text signatures of one collaborator (docker, the
storage CLIs, titan) and exposes a classify() that maps raw output to an
ErrorKind. Nothing outside this package matches on collaborator output.
"""
