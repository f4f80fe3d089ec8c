from django.contrib import admin
from django.contrib.auth.admin import UserAdmin

from .models import (
    Accommodation,
    ActivityLog,
    Admission,
    CustomUser,
    DischargeClearance,
    Invoice,
    LabOrder,
    Medicine,
    PharmacyBill,
    PharmacyBillItem,
    Prescription,
    PrescriptionItem,
    RoleCounter,
    Ward,
)


class CustomUserAdmin(UserAdmin):
    model = CustomUser
    list_display = ['username', 'display_user_id', 'name', 'email', 'role']
    list_filter = ['role', 'is_active']
    search_fields = ['username', 'name', 'email', 'display_user_id']
    readonly_fields = ['display_user_id']
    fieldsets = UserAdmin.fieldsets + (
        ('Hospital', {'fields': ('role', 'display_user_id', 'name', 'phone')}),
    )
    add_fieldsets = UserAdmin.add_fieldsets + (
        ('Hospital', {'fields': ('role', 'name', 'phone')}),
    )


class AccommodationAdmin(admin.ModelAdmin):
    list_display = ['__str__', 'type', 'status', 'price_per_day', 'patient', 'doctor']
    list_filter = ['type', 'status', 'ward']


class DischargeClearanceInline(admin.TabularInline):
    model = DischargeClearance
    extra = 0
    readonly_fields = ['clearance_step', 'is_cleared', 'cleared_by', 'cleared_at', 'notes']
    can_delete = False


class AdmissionAdmin(admin.ModelAdmin):
    inlines = [DischargeClearanceInline]
    list_display = ['id', 'patient', 'doctor', 'accommodation', 'admission_date', 'discharge_date']
    list_filter = ['discharge_date']


class PrescriptionItemInline(admin.TabularInline):
    model = PrescriptionItem
    extra = 1


class PrescriptionAdmin(admin.ModelAdmin):
    inlines = [PrescriptionItemInline]
    list_display = ['id', 'patient', 'doctor', 'status', 'prescription_date']


class InvoiceAdmin(admin.ModelAdmin):
    list_display = ['id', 'patient', 'amount', 'status', 'payment_mode', 'created_at']
    list_filter = ['status', 'payment_mode']


class LabOrderAdmin(admin.ModelAdmin):
    list_display = ['id', 'test_name', 'patient', 'doctor', 'status', 'cost', 'created_at']
    list_filter = ['status']
    search_fields = ['test_name', 'patient__username', 'patient__name']


class PharmacyBillItemInline(admin.TabularInline):
    model = PharmacyBillItem
    extra = 0
    readonly_fields = ['medicine', 'quantity', 'unit_price']
    can_delete = False


class PharmacyBillAdmin(admin.ModelAdmin):
    inlines = [PharmacyBillItemInline]
    list_display = ['id', 'prescription', 'invoice', 'total_amount', 'created_at']


class ActivityLogAdmin(admin.ModelAdmin):
    list_display = ['timestamp', 'user', 'action', 'target_user']
    list_filter = ['action']

    def has_change_permission(self, request, obj=None):
        return False


admin.site.register(CustomUser, CustomUserAdmin)
admin.site.register(RoleCounter)
admin.site.register(Ward)
admin.site.register(Accommodation, AccommodationAdmin)
admin.site.register(Admission, AdmissionAdmin)
admin.site.register(Medicine)
admin.site.register(Prescription, PrescriptionAdmin)
admin.site.register(LabOrder, LabOrderAdmin)
admin.site.register(Invoice, InvoiceAdmin)
admin.site.register(PharmacyBill, PharmacyBillAdmin)
admin.site.register(ActivityLog, ActivityLogAdmin)
