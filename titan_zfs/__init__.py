from importlib.resources import files as _files


def asset_path(relative: str) -> str:
    return str(_files(__package__) / relative)


from titan_zfs.main import main as main  # noqa: E402
