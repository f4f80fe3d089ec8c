from django.urls import path

from . import views

urlpatterns = [
    # Auth
    path('login/', views.login_view, name='login'),
    path('logout/', views.logout_view, name='logout'),

    # Staff
    path('api/staff/', views.staff_action, name='staff_action'),
    path('api/staff/bed-management/', views.bed_management, name='bed_management'),
    path('api/staff/admissions/', views.staff_admissions, name='staff_admissions'),
    path('api/staff/discharge-requests/', views.discharge_requests, name='discharge_requests'),
    path('api/staff/lab-orders/', views.staff_lab_orders, name='staff_lab_orders'),

    # Invoices
    path('api/invoices/<int:invoice_id>/pdf/', views.InvoicePdfView.as_view(), name='invoice_pdf'),

    # Doctor
    path('api/doctor/admit/', views.doctor_admit, name='doctor_admit'),
    path('api/doctor/discharge/', views.doctor_discharge, name='doctor_discharge'),
    path('api/doctor/prescriptions/', views.doctor_prescriptions, name='doctor_prescriptions'),
    path('api/doctor/admissions/', views.doctor_admissions, name='doctor_admissions'),
    path('api/doctor/lab-orders/', views.doctor_lab_orders, name='doctor_lab_orders'),
]
