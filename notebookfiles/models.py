import copy
from typing import Any, Dict

DIRECTORY = "directory"
FILE = "file"
NODE_TYPES = (DIRECTORY, FILE)

NOTEBOOK_EXTENSIONS = {'.jl'}


def classify_file(name: str) -> str:
    """Presentation tag for a file: 'notebook' or 'other'"""
    dot = name.rfind('.')
    if dot > 0 and name[dot:].lower() in NOTEBOOK_EXTENSIONS:
        return "notebook"
    return "other"


class Node:
    __slots__ = ['name', 'type', 'path', 'children', 'process_id', 'is_running',
                 'size', 'modified_at', 'file_kind', 'process_status', 'in_temp_dir']

    def __init__(self, name, node_type, path, children=None):
        self.name = name
        self.type = node_type
        self.path = path
        # Directories always carry a list; files never do
        if node_type == DIRECTORY:
            self.children = list(children) if children is not None else []
        else:
            self.children = None
        self.process_id = None
        self.is_running = False
        self.size = 0
        self.modified_at = ""
        self.file_kind = classify_file(name) if node_type == FILE else ""
        self.process_status = None
        self.in_temp_dir = False

    @property
    def shortpath(self) -> str:
        return self.path

    @property
    def is_directory(self) -> bool:
        return self.type == DIRECTORY

    @property
    def is_empty(self) -> bool:
        return self.is_directory and not self.children

    def copy(self) -> 'Node':
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        """Convert node (and subtree) to the shape consumed by the presentation layer"""
        data: Dict[str, Any] = {
            "name": self.name,
            "type": self.type,
            "path": self.path,
        }
        if self.is_directory:
            data["empty"] = self.is_empty
            data["children"] = [child.to_dict() for child in self.children]
        else:
            data.update({
                "processId": self.process_id,
                "isRunning": self.is_running,
                "processStatus": self.process_status,
                "size": self.size,
                "modifiedAt": self.modified_at,
                "fileKind": self.file_kind,
                "inTempDir": self.in_temp_dir,
            })
        return data

    def __repr__(self):
        return f"Node({self.type}, {self.path!r})"


def make_root() -> Node:
    return Node("root", DIRECTORY, "")
