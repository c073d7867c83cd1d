# FILE: forwarder/models.py
from __future__ import annotations
from datetime import date, datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field

# -------- Item log --------
# Column order is the artifact's field order.
ITEM_LOG_COLUMNS = (
    "ID", "DateTimeStamp", "SKU", "Pallet_Number", "OCR_Description_1", "Quantity",
    "Batch_Number", "Barcode", "OCR_Description_2", "Cross_Check", "Label_Printed",
    "Label_Applied", "Check_Scan_Result", "Valid", "Sent", "ImageSent", "Duplicate", "Complete",
)

class ItemLogRow(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: int = Field(alias="ID")
    timestamp: datetime = Field(alias="DateTimeStamp")

    sku: Optional[str] = Field(None, alias="SKU")
    pallet_number: Optional[int] = Field(None, alias="Pallet_Number")
    ocr_description_1: Optional[str] = Field(None, alias="OCR_Description_1")
    quantity: Optional[int] = Field(None, alias="Quantity")
    batch_number: Optional[str] = Field(None, alias="Batch_Number")
    barcode: Optional[str] = Field(None, alias="Barcode")
    ocr_description_2: Optional[str] = Field(None, alias="OCR_Description_2")

    cross_check: bool = Field(False, alias="Cross_Check")
    label_printed: bool = Field(False, alias="Label_Printed")
    label_applied: bool = Field(False, alias="Label_Applied")

    check_scan_result: Optional[str] = Field(None, alias="Check_Scan_Result")

    valid: bool = Field(False, alias="Valid")
    sent: bool = Field(False, alias="Sent")
    image_sent: bool = Field(False, alias="ImageSent")
    duplicate: bool = Field(False, alias="Duplicate")
    complete: bool = Field(False, alias="Complete")

    @property
    def stat_date(self) -> date:
        return self.timestamp.date()

    def values(self) -> tuple:
        """Field values in ITEM_LOG_COLUMNS order."""
        d = self.model_dump(by_alias=True)
        return tuple(d[c] for c in ITEM_LOG_COLUMNS)


# -------- Daily stats --------
STATS_COLUMNS = (
    "TotalScans", "SKU_Count", "Pallet_Count", "OCR_Description_1_Count", "Quantity_Count",
    "Batch_Number_Count", "Barcode_Count", "OCR_Description_2_Count", "Cross_Check_Count",
    "Label_Printed_Count", "Label_Applied_Count", "Check_Scan_Result_Count", "Valid_Count",
    "Sent_Count", "ImageSent_Count", "Duplicate_Count", "Complete_Count",
    "IC1_Good_Read_Count", "IC1_No_Read_Count", "IC2_Good_Read_Count", "IC2_No_Read_Count",
    "Cross_Check_Fail_Count", "CheckScan_Good_Read_Count", "CheckScan_No_Read_Count",
)

class DailyStatsRow(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    stat_date: date = Field(alias="StatDate")
    total_scans: int = Field(0, alias="TotalScans")
    sku_count: int = Field(0, alias="SKU_Count")
    pallet_count: int = Field(0, alias="Pallet_Count")
    ocr_description_1_count: int = Field(0, alias="OCR_Description_1_Count")
    quantity_count: int = Field(0, alias="Quantity_Count")
    batch_number_count: int = Field(0, alias="Batch_Number_Count")
    barcode_count: int = Field(0, alias="Barcode_Count")
    ocr_description_2_count: int = Field(0, alias="OCR_Description_2_Count")
    cross_check_count: int = Field(0, alias="Cross_Check_Count")
    label_printed_count: int = Field(0, alias="Label_Printed_Count")
    label_applied_count: int = Field(0, alias="Label_Applied_Count")
    check_scan_result_count: int = Field(0, alias="Check_Scan_Result_Count")
    valid_count: int = Field(0, alias="Valid_Count")
    sent_count: int = Field(0, alias="Sent_Count")
    image_sent_count: int = Field(0, alias="ImageSent_Count")
    duplicate_count: int = Field(0, alias="Duplicate_Count")
    complete_count: int = Field(0, alias="Complete_Count")
    ic1_good_read_count: int = Field(0, alias="IC1_Good_Read_Count")
    ic1_no_read_count: int = Field(0, alias="IC1_No_Read_Count")
    ic2_good_read_count: int = Field(0, alias="IC2_Good_Read_Count")
    ic2_no_read_count: int = Field(0, alias="IC2_No_Read_Count")
    cross_check_fail_count: int = Field(0, alias="Cross_Check_Fail_Count")
    check_scan_good_read_count: int = Field(0, alias="CheckScan_Good_Read_Count")
    check_scan_no_read_count: int = Field(0, alias="CheckScan_No_Read_Count")
