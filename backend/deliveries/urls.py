from django.urls import path
from . import views

app_name = 'deliveries'

urlpatterns = [
    path('vehicle-types/', views.list_vehicle_types, name='vehicle-types'),

    # Customer APIs
    path('customer/request/', views.create_delivery, name='create-delivery'),
    path('customer/current/', views.get_current_deliveries, name='current-deliveries'),
    path('<int:delivery_id>/cancel/', views.cancel_delivery, name='cancel-delivery'),

    # Driver delivery actions
    path('<int:delivery_id>/accept/', views.accept_delivery, name='accept-delivery'),
    path('<int:delivery_id>/decline/', views.decline_delivery, name='decline-delivery'),
    path('<int:delivery_id>/status/', views.update_delivery_status, name='update-delivery-status'),
    path('<int:delivery_id>/complete/', views.complete_delivery, name='complete-delivery'),

    path('<int:delivery_id>/', views.delivery_detail, name='delivery-detail'),
]
