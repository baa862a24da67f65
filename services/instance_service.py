from datetime import datetime
from typing import Any, Dict, List, Optional

from pymongo.errors import DuplicateKeyError

from db.config import get_mongo_db


class InstanceService:
    GROUPS_COLLECTION = "instances_groups"
    FLAGS_COLLECTION = "monitoring_flags"

    def __init__(self, mongo_db=None):
        self.mongo_db = mongo_db if mongo_db is not None else get_mongo_db()
        self.groups_col = self.mongo_db[self.GROUPS_COLLECTION]
        self.flags_col = self.mongo_db[self.FLAGS_COLLECTION]

    def create_group(self, group: dict) -> dict:
        now = datetime.utcnow()
        group = dict(group)
        group["created_at"] = now.isoformat() + "Z"
        self.groups_col.insert_one(group)
        group.pop("_id", None)
        return group

    def get_group(self, group_uuid: str) -> Optional[dict]:
        group = self.groups_col.find_one({"uuid": group_uuid})
        if group:
            group.pop("_id", None)
        return group

    def list_groups(self) -> List[dict]:
        groups = list(self.groups_col.find({}))
        for g in groups:
            g.pop("_id", None)
        return groups

    def delete_group(self, group_uuid: str) -> bool:
        result = self.groups_col.delete_one({"uuid": group_uuid})
        return result.deleted_count > 0

    def get_instance(self, instance_uuid: str) -> Optional[dict]:
        group = self.groups_col.find_one(
            {"instances.uuid": instance_uuid},
            {"instances.$": 1}
        )
        if not group or not group.get("instances"):
            return None
        return group["instances"][0]

    def update_instance_data(self, instance_uuid: str, data: Dict[str, Any]) -> Optional[dict]:
        updates = {f"instances.$.data.{key}": value for key, value in data.items()}
        result = self.groups_col.update_one(
            {"instances.uuid": instance_uuid},
            {"$set": updates}
        )
        if result.matched_count == 0:
            return None
        return self.get_instance(instance_uuid)

    def update_instance_status(self, instance_uuid: str, status: str) -> Optional[dict]:
        result = self.groups_col.update_one(
            {"instances.uuid": instance_uuid},
            {"$set": {"instances.$.status": status}}
        )
        if result.matched_count == 0:
            return None
        return self.get_instance(instance_uuid)

    def acquire_flag(self, group_uuid: str, cycle: int, owner: Optional[str] = None) -> bool:
        try:
            self.flags_col.insert_one({
                "_id": f"{group_uuid}:{cycle}",
                "group": group_uuid,
                "cycle": cycle,
                "owner": owner,
                "created_at": datetime.utcnow()
            })
        except DuplicateKeyError:
            return False
        return True
