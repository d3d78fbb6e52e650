from django.contrib import admin
from .models import SeatCounter, StudentRecord

@admin.register(StudentRecord)
class StudentRecordAdmin(admin.ModelAdmin):
    list_display = ('seat_number', 'full_name', 'mobile', 'location', 'attendance', 'created_at')
    list_filter = ('attendance', 'location', 'field_of_interest')
    search_fields = ('full_name', 'seat_number', 'mobile', 'own_referral_code', 'referral_code')
    readonly_fields = ('seat_number', 'own_referral_code', 'created_at')

@admin.register(SeatCounter)
class SeatCounterAdmin(admin.ModelAdmin):
    list_display = ('year', 'value', 'updated_at')
