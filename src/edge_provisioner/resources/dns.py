"""DNS record set resource model."""

from __future__ import annotations

from typing import Annotated, ClassVar, Literal

from pydantic import Field

from edge_provisioner.resources.base import Resource
from edge_provisioner.resources.markers import ApiField, Compare

RecordType = Literal["A", "AAAA", "CNAME", "TXT", "CAA", "MX"]


class DnsRecordSetResource(Resource):
    """A record set inside an existing managed DNS zone.

    ``rrdatas`` commonly carries an expression such as
    ``${global_address.web_ip.address}``.
    """

    resource_type: ClassVar[str] = "dns_record_set"
    api_kind: ClassVar[str] = "rrsets"

    managed_zone: Annotated[str, ApiField("managedZone")] = Field(min_length=1)
    record_name: Annotated[str, ApiField("dnsName")] = Field(min_length=1)
    record_type: Annotated[RecordType, ApiField("type")] = "A"
    ttl: int = Field(default=300, ge=0, le=604800)
    rrdatas: Annotated[list[Annotated[str, Field(min_length=1)]], Compare("set")] = Field(
        min_length=1
    )
