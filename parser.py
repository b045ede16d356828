import os
import re
from typing import Dict, List


class OutputIndex:
    """
    Index the per-node output files named:
        flow_node_<nodeID>.h5

    anywhere below ``base_path``. Produces a dictionary:
        node_id -> file path
    """

    FILE_PATTERN = re.compile(r"^flow_node_(\d+)\.h5$")

    def __init__(self, base_path: str):
        self.base_path = base_path
        self.nodes: Dict[int, str] = {}
        self.scan()

    def scan(self):
        """
        Walk the base directory and build the node dictionary.

        Raises:
            FileNotFoundError: base path missing, or no node file below it.
            ValueError: the same node id appears twice.
        """
        if not os.path.isdir(self.base_path):
            raise FileNotFoundError(f"Base path is not a directory: {self.base_path}")

        self.nodes.clear()
        for root, _, files in os.walk(self.base_path):
            for name in sorted(files):
                match = self.FILE_PATTERN.match(name)
                if not match:
                    continue

                node_id = int(match.group(1))
                path    = os.path.join(root, name)
                if node_id in self.nodes:
                    raise ValueError(
                        f"Node {node_id} found twice: {self.nodes[node_id]} and {path}")
                self.nodes[node_id] = path

        if len(self.nodes) == 0:
            raise FileNotFoundError(f"No flow_node_*.h5 file found below: {self.base_path}")

    def get_node_file(self, node_id: int) -> str:
        if node_id not in self.nodes:
            raise ValueError(f"Node ID {node_id} not found.")
        return self.nodes[node_id]

    def get_all_h5_paths(self) -> List[str]:
        """All node files, ordered by node id."""
        return [self.nodes[i] for i in sorted(self.nodes)]

    def __len__(self):
        return len(self.nodes)
