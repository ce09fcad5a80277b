import io

import olefile


def _has_ole_encryption_stream(ole: olefile.OleFileIO) -> bool:
    for stream in ("EncryptionInfo", "EncryptedPackage", "DataSpaces"):
        if ole.exists(stream):
            return True
    return False


def is_ooxml_encrypted(file_like: io.BytesIO) -> bool:
    """
    Password-protected OOXML files are not ZIP archives but OLE compound
    files wrapping an EncryptedPackage stream.
    """
    file_like.seek(0)
    if olefile.isOleFile(file_like):
        file_like.seek(0)
        with olefile.OleFileIO(file_like) as ole:
            encrypted = _has_ole_encryption_stream(ole)
        file_like.seek(0)
        return encrypted
    file_like.seek(0)
    return False
