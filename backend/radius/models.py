from django.db import models


class RadiusLog(models.Model):
    timestamp = models.DateTimeField(auto_now_add=True, db_index=True)
    level = models.CharField(max_length=20, db_index=True)
    logger = models.CharField(max_length=100)
    message = models.TextField()

    class Meta:
        db_table = 'radius_logs'
        ordering = ['-timestamp']

    def __str__(self):
        return f"{self.timestamp} - {self.level} - {self.message[:50]}"

    @classmethod
    def trim(cls, limit: int) -> int:
        """
        Delete the oldest entries so that at most `limit` remain.

        Returns:
            Number of entries deleted
        """
        count = cls.objects.count()
        if count <= limit:
            return 0

        # Everything up to the Nth oldest id goes
        to_delete = count - limit
        threshold = cls.objects.order_by('id').values_list('id', flat=True)[to_delete - 1:to_delete]
        if not threshold:
            return 0

        deleted, _ = cls.objects.filter(id__lte=threshold[0]).delete()
        return deleted
